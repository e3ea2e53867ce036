"""
Canonical field catalogs for contact and company imports.

Each entry describes how CSV headers are recognised (regex patterns, synonym
phrases, keyword tokens and a relative weight) and how cell values are coerced
(the field kind). The catalogs are immutable module-level data.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple


class FieldKind(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    INTEGER = "integer"
    DECIMAL = "decimal"
    LIST = "list"
    URL = "url"


class EntityType(str, Enum):
    CONTACT = "contact"
    COMPANY = "company"


@dataclass(frozen=True)
class CanonicalField:
    name: str
    label: str
    category: str
    patterns: Tuple[str, ...]
    synonyms: Tuple[str, ...]
    keywords: Tuple[str, ...]
    weight: float
    kind: FieldKind = FieldKind.TEXT
    compiled_patterns: Tuple[Pattern[str], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        compiled = tuple(re.compile(pattern, re.IGNORECASE) for pattern in self.patterns)
        object.__setattr__(self, "compiled_patterns", compiled)


@dataclass(frozen=True)
class FieldCatalog:
    entity_type: EntityType
    fields: Tuple[CanonicalField, ...]
    # field -> fields whose presence elsewhere in the file corroborates it
    related_fields: Dict[str, Tuple[str, ...]]
    # a record needs at least one of these after coercion
    identity_fields: Tuple[str, ...]

    def get(self, name: str) -> Optional[CanonicalField]:
        for canonical in self.fields:
            if canonical.name == name:
                return canonical
        return None

    @property
    def field_names(self) -> List[str]:
        return [canonical.name for canonical in self.fields]

    def describe(self) -> List[Dict[str, str]]:
        """Return value/label/category entries for field pickers."""
        return [
            {"value": canonical.name, "label": canonical.label, "category": canonical.category}
            for canonical in self.fields
        ]


def _field(name, label, category, patterns, synonyms, keywords, weight, kind=FieldKind.TEXT):
    return CanonicalField(
        name=name,
        label=label,
        category=category,
        patterns=tuple(patterns),
        synonyms=tuple(synonyms),
        keywords=tuple(keywords),
        weight=weight,
        kind=kind,
    )


CONTACT_FIELDS: Tuple[CanonicalField, ...] = (
    # Personal information
    _field(
        "full_name", "Full Name", "Personal",
        ["full.*name", "complete.*name", "^name$", "contact.*name", "person.*name", "full_name", "fullname"],
        ["full name", "complete name", "name", "contact name", "person name", "full_name", "fullname", "display name"],
        ["full", "complete", "name", "contact", "person", "display"],
        1.0,
    ),
    _field(
        "first_name", "First Name", "Personal",
        ["first.*name", "given.*name", "fname", "f_name", "firstname"],
        ["first name", "given name", "fname", "forename", "f_name", "firstname", "christian name"],
        ["first", "given", "fname", "forename", "christian"],
        0.9,
    ),
    _field(
        "last_name", "Last Name", "Personal",
        ["last.*name", "family.*name", "surname", "lname", "l_name", "lastname"],
        ["last name", "family name", "surname", "lname", "l_name", "lastname"],
        ["last", "family", "surname", "lname"],
        0.9,
    ),
    _field(
        "title", "Job Title", "Personal",
        ["job.*title", "job.*position", "^title$", "^position$", "role", "designation", "job_title", "jobtitle"],
        ["job title", "title", "position", "role", "designation", "job_title", "jobtitle", "job position", "work title"],
        ["job", "title", "position", "role", "designation", "work"],
        0.95,
    ),
    # Contact information
    _field(
        "email", "Email", "Contact",
        ["email.*address", "^email$", "e.mail", "e_mail", "mail", "email_address", "emailaddress"],
        ["email address", "email", "e-mail", "mail", "electronic mail", "e_mail", "email_address", "emailaddress"],
        ["email", "mail", "e-mail", "@", "electronic"],
        1.0,
        FieldKind.EMAIL,
    ),
    _field(
        "mobile_phone", "Mobile Phone", "Contact",
        ["mobile.*phone", "mobile.*number", "cell.*phone", "cell.*number", "^mobile$", "^cell$", "^phone$",
         "phone.*number", "tel", "telephone"],
        ["mobile phone", "mobile", "cell phone", "cell", "phone", "telephone", "tel", "mobile number",
         "cell number", "phone number"],
        ["mobile", "cell", "phone", "tel", "telephone", "number"],
        0.9,
        FieldKind.PHONE,
    ),
    _field(
        "corporate_phone", "Corporate Phone", "Contact",
        ["corporate.*phone", "corp.*phone", "work.*phone", "office.*phone", "business.*phone", "company.*phone"],
        ["corporate phone", "corp phone", "work phone", "office phone", "business phone", "company phone",
         "work number", "office number"],
        ["corporate", "corp", "work", "office", "business", "company"],
        0.85,
        FieldKind.PHONE,
    ),
    _field(
        "home_phone", "Home Phone", "Contact",
        ["home.*phone", "home.*tel", "home.*number", "landline", "house.*phone"],
        ["home phone", "home telephone", "landline", "home tel", "house phone", "home number"],
        ["home", "landline", "house", "personal"],
        0.8,
        FieldKind.PHONE,
    ),
    _field(
        "other_phone", "Other Phone", "Contact",
        ["other.*phone", "alt.*phone", "alternate.*phone", "additional.*phone", "secondary.*phone"],
        ["other phone", "alt phone", "alternate phone", "additional phone", "secondary phone", "backup phone"],
        ["other", "alt", "alternate", "additional", "secondary", "backup"],
        0.7,
        FieldKind.PHONE,
    ),
    # Company information
    _field(
        "company", "Company", "Company",
        ["company.*name", "^company$", "organization", "org", "employer", "business.*name", "firm", "corp",
         "corporation"],
        ["company name", "company", "organization", "org", "employer", "business", "firm", "corp",
         "corporation", "enterprise"],
        ["company", "organization", "org", "employer", "business", "firm", "corp", "enterprise"],
        0.95,
    ),
    _field(
        "industry", "Industry", "Company",
        ["^industry$", "sector", "business.*type", "vertical", "field", "domain"],
        ["industry", "sector", "business type", "field", "vertical", "domain", "market"],
        ["industry", "sector", "business", "field", "vertical", "domain", "market"],
        0.9,
    ),
    _field(
        "employees", "Employees", "Company",
        ["employees", "employee.*count", "staff.*count", "headcount", "team.*size", "workforce"],
        ["employees", "employee count", "staff count", "headcount", "team size", "workforce",
         "number of employees"],
        ["employees", "employee", "staff", "headcount", "team", "workforce", "count"],
        0.8,
        FieldKind.INTEGER,
    ),
    _field(
        "employee_size_bracket", "Employee Size Bracket", "Company",
        ["employee.*size", "company.*size", "size.*bracket", "employee.*bracket"],
        ["employee size bracket", "company size", "size bracket", "employee bracket", "company size bracket"],
        ["size", "bracket", "range", "category"],
        0.75,
    ),
    _field(
        "annual_revenue", "Annual Revenue", "Company",
        ["annual.*revenue", "revenue", "turnover", "sales", "income"],
        ["annual revenue", "revenue", "turnover", "sales", "income", "yearly revenue"],
        ["revenue", "turnover", "sales", "income", "annual", "yearly"],
        0.8,
        FieldKind.DECIMAL,
    ),
    _field(
        "website", "Website", "Company",
        ["^website$", "web.*site", "company.*website", "homepage", "web.*address", "site.*url", "url"],
        ["website", "web site", "company website", "homepage", "web address", "site url", "url"],
        ["website", "web", "company", "homepage", "site"],
        0.95,
        FieldKind.URL,
    ),
    _field(
        "technologies", "Technologies", "Company",
        ["technologies", "tech.*stack", "tools", "software", "platforms"],
        ["technologies", "tech stack", "tools", "software", "platforms", "tech", "technology"],
        ["technologies", "tech", "tools", "software", "platforms", "stack"],
        0.8,
        FieldKind.LIST,
    ),
    # Social
    _field(
        "person_linkedin", "Person LinkedIn", "Social",
        ["person.*linkedin.*url", "personal.*linkedin.*url", "linkedin.*url", "person.*linkedin",
         "personal.*linkedin", "^linkedin$", "profile.*url"],
        ["person linkedin url", "personal linkedin url", "linkedin url", "person linkedin", "personal linkedin",
         "linkedin", "profile url"],
        ["person", "personal", "linkedin", "profile", "url"],
        0.95,
        FieldKind.URL,
    ),
    _field(
        "company_linkedin", "Company LinkedIn", "Social",
        ["company.*linkedin.*url", "business.*linkedin.*url", "corp.*linkedin.*url",
         "organization.*linkedin.*url", "company.*linkedin"],
        ["company linkedin url", "business linkedin url", "corp linkedin url", "organization linkedin url",
         "company linkedin"],
        ["company", "business", "corp", "organization", "linkedin", "url"],
        0.9,
        FieldKind.URL,
    ),
    # Location
    _field(
        "city", "City", "Location",
        ["^city$", "town", "locality", "municipality"],
        ["city", "town", "locality", "municipality", "place"],
        ["city", "town", "locality", "place", "location"],
        0.85,
    ),
    _field(
        "state", "State", "Location",
        ["^state$", "province", "region", "territory"],
        ["state", "province", "region", "territory", "administrative region"],
        ["state", "province", "region", "territory", "admin"],
        0.8,
    ),
    _field(
        "country", "Country", "Location",
        ["^country$", "nation", "nationality"],
        ["country", "nation", "nationality"],
        ["country", "nation", "nationality", "national"],
        0.9,
    ),
    _field(
        "company_address", "Company Address", "Company Location",
        ["company.*address", "business.*address", "office.*address", "work.*address"],
        ["company address", "business address", "office address", "work address", "corporate address"],
        ["company", "business", "office", "work", "corporate", "address"],
        0.8,
    ),
    _field(
        "company_city", "Company City", "Company Location",
        ["company.*city", "business.*city", "office.*city", "work.*city"],
        ["company city", "business city", "office city", "work city", "corporate city"],
        ["company", "business", "office", "work", "corporate", "city"],
        0.75,
    ),
    _field(
        "company_state", "Company State", "Company Location",
        ["company.*state", "business.*state", "office.*state", "work.*state"],
        ["company state", "business state", "office state", "work state", "corporate state"],
        ["company", "business", "office", "work", "corporate", "state"],
        0.75,
    ),
    _field(
        "company_country", "Company Country", "Company Location",
        ["company.*country", "business.*country", "office.*country", "work.*country"],
        ["company country", "business country", "office country", "work country", "corporate country"],
        ["company", "business", "office", "work", "corporate", "country"],
        0.75,
    ),
)


COMPANY_FIELDS: Tuple[CanonicalField, ...] = (
    _field(
        "name", "Company Name", "Identity",
        ["company.*name", "^company$", "^name$", "organization.*name", "^organization$", "account.*name",
         "business.*name", "^account$"],
        ["company name", "company", "name", "organization", "organization name", "account name", "business name",
         "account"],
        ["company", "name", "organization", "account", "business", "firm"],
        1.0,
    ),
    _field(
        "website", "Website", "Identity",
        ["^website$", "web.*site", "company.*website", "homepage", "web.*address", "site.*url", "^url$"],
        ["website", "web site", "company website", "homepage", "web address", "site url", "url"],
        ["website", "web", "homepage", "site", "url"],
        0.95,
        FieldKind.URL,
    ),
    _field(
        "domains", "Domains", "Identity",
        ["domain", "email.*domain", "company.*domain"],
        ["domain", "domains", "email domain", "company domain", "web domain"],
        ["domain", "domains"],
        0.9,
        FieldKind.LIST,
    ),
    _field(
        "linkedin_url", "LinkedIn URL", "Identity",
        ["linkedin", "linkedin.*url", "company.*linkedin"],
        ["linkedin", "linkedin url", "company linkedin", "company linkedin url"],
        ["linkedin"],
        0.9,
        FieldKind.URL,
    ),
    _field(
        "industry", "Industry", "Details",
        ["^industry$", "sector", "vertical"],
        ["industry", "sector", "vertical", "market"],
        ["industry", "sector", "vertical", "market"],
        0.9,
    ),
    _field(
        "employees", "Employees", "Details",
        ["^employees$", "employee.*count", "staff.*count", "headcount", "number.*employees", "workforce"],
        ["employees", "employee count", "staff count", "headcount", "number of employees", "workforce"],
        ["employees", "employee", "staff", "headcount", "workforce"],
        0.85,
        FieldKind.INTEGER,
    ),
    _field(
        "employee_size_bracket", "Employee Size Bracket", "Details",
        ["employee.*size", "company.*size", "size.*bracket", "employee.*range"],
        ["employee size bracket", "company size", "size bracket", "employee range", "size"],
        ["size", "bracket", "range"],
        0.75,
    ),
    _field(
        "short_description", "Description", "Details",
        ["description", "about", "summary", "overview"],
        ["short description", "description", "about", "summary", "company description", "overview"],
        ["description", "about", "summary", "overview"],
        0.8,
    ),
    _field(
        "keywords", "Keywords", "Details",
        ["^keywords$", "tags", "specialties"],
        ["keywords", "tags", "specialties", "specialities"],
        ["keywords", "tags", "specialties"],
        0.75,
    ),
    _field(
        "business_type", "Business Type", "Details",
        ["business.*type", "company.*type", "^type$"],
        ["business type", "company type", "type", "business model"],
        ["type", "model"],
        0.7,
    ),
    _field(
        "phone", "Phone", "Contact",
        ["phone", "telephone", "^tel$", "contact.*number", "company.*phone"],
        ["phone", "telephone", "tel", "phone number", "company phone", "main phone"],
        ["phone", "telephone", "tel"],
        0.9,
        FieldKind.PHONE,
    ),
    _field(
        "street", "Street", "Location",
        ["street", "address.*line", "address.*1"],
        ["street", "street address", "address line 1", "address 1"],
        ["street", "line"],
        0.8,
    ),
    _field(
        "address", "Address", "Location",
        ["^address$", "full.*address", "company.*address", "hq.*address", "headquarters"],
        ["address", "full address", "company address", "hq address", "headquarters"],
        ["address", "headquarters", "hq"],
        0.8,
    ),
    _field(
        "city", "City", "Location",
        ["city", "town", "locality"],
        ["city", "town", "locality", "company city"],
        ["city", "town", "locality"],
        0.85,
    ),
    _field(
        "state", "State", "Location",
        ["^state$", "province", "region", "company.*state"],
        ["state", "province", "region", "company state"],
        ["state", "province", "region"],
        0.8,
    ),
    _field(
        "country", "Country", "Location",
        ["country", "nation"],
        ["country", "nation", "company country"],
        ["country", "nation"],
        0.9,
    ),
    _field(
        "postal_code", "Postal Code", "Location",
        ["postal.*code", "post.*code", "zip", "postcode"],
        ["postal code", "postcode", "zip", "zip code"],
        ["postal", "zip", "postcode"],
        0.85,
    ),
    _field(
        "technologies", "Technologies", "Technology",
        ["technologies", "tech.*stack", "tools", "software", "platforms"],
        ["technologies", "tech stack", "tools", "software", "platforms", "tech", "technology"],
        ["technologies", "tech", "tools", "software", "platforms", "stack"],
        0.8,
        FieldKind.LIST,
    ),
    _field(
        "sic_codes", "SIC Codes", "Technology",
        ["sic"],
        ["sic codes", "sic code", "sic"],
        ["sic"],
        0.8,
    ),
    _field(
        "naics_codes", "NAICS Codes", "Technology",
        ["naics"],
        ["naics codes", "naics code", "naics"],
        ["naics"],
        0.8,
    ),
    _field(
        "annual_revenue", "Annual Revenue", "Financial",
        ["annual.*revenue", "revenue", "turnover", "sales"],
        ["annual revenue", "revenue", "turnover", "sales", "yearly revenue"],
        ["revenue", "turnover", "sales", "annual"],
        0.8,
    ),
    _field(
        "total_funding", "Total Funding", "Financial",
        ["total.*funding", "^funding$", "funding.*total"],
        ["total funding", "funding", "total raised"],
        ["funding", "raised", "total"],
        0.8,
    ),
    _field(
        "latest_funding", "Latest Funding", "Financial",
        ["latest.*funding", "last.*funding", "funding.*round", "funding.*stage"],
        ["latest funding", "last funding", "funding round", "funding stage"],
        ["latest", "round", "stage"],
        0.75,
    ),
    _field(
        "latest_funding_amount", "Latest Funding Amount", "Financial",
        ["latest.*funding.*amount", "last.*funding.*amount", "round.*amount"],
        ["latest funding amount", "last funding amount", "round amount"],
        ["amount"],
        0.75,
    ),
    _field(
        "last_raised_at", "Last Raised At", "Financial",
        ["last.*raised", "raised.*at", "funding.*date"],
        ["last raised at", "last raised", "funding date"],
        ["raised"],
        0.7,
    ),
    _field(
        "retail_locations", "Retail Locations", "Metrics",
        ["retail.*locations", "store.*count", "number.*stores", "locations"],
        ["retail locations", "store count", "number of stores", "locations"],
        ["retail", "stores", "locations"],
        0.75,
        FieldKind.INTEGER,
    ),
    _field(
        "founded_year", "Founded Year", "Metrics",
        ["founded", "year.*founded", "established", "founding.*year"],
        ["founded year", "year founded", "founded", "established", "founding year"],
        ["founded", "established"],
        0.8,
        FieldKind.INTEGER,
    ),
)


CONTACT_CATALOG = FieldCatalog(
    entity_type=EntityType.CONTACT,
    fields=CONTACT_FIELDS,
    related_fields={
        "first_name": ("last_name", "full_name"),
        "last_name": ("first_name", "full_name"),
        "city": ("country", "state"),
        "state": ("city", "country"),
        "country": ("city", "state"),
        "company": ("title", "industry"),
        "email": ("first_name", "last_name", "company"),
    },
    identity_fields=("full_name", "first_name", "last_name", "email"),
)

COMPANY_CATALOG = FieldCatalog(
    entity_type=EntityType.COMPANY,
    fields=COMPANY_FIELDS,
    related_fields={
        "name": ("website", "industry"),
        "website": ("name", "domains"),
        "city": ("country", "state"),
        "state": ("city", "country"),
        "country": ("city", "state"),
        "street": ("city", "postal_code"),
        "postal_code": ("city", "street"),
    },
    identity_fields=("name",),
)

_CATALOGS = {
    EntityType.CONTACT: CONTACT_CATALOG,
    EntityType.COMPANY: COMPANY_CATALOG,
}


def get_catalog(entity_type) -> FieldCatalog:
    """Return the catalog for ``entity_type`` (enum member or its string value)."""
    return _CATALOGS[EntityType(entity_type)]
