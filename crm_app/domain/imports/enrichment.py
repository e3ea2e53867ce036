"""
Derived attributes for imported contacts (``auto_enrich``).

Enrichment only fills attributes that are empty on the incoming record. It runs
before duplicate resolution, so the fill-empty merge rule also keeps it from
overwriting anything already stored.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from crm_app.utils.domains import email_domain
from crm_app.utils.phone import phone_digits

# Checked in order; "1" only matches full 11-digit NANP numbers.
_DIALING_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("44", "United Kingdom"),
    ("49", "Germany"),
    ("33", "France"),
    ("81", "Japan"),
    ("91", "India"),
    ("61", "Australia"),
    ("86", "China"),
    ("65", "Singapore"),
)

COUNTRY_TIMEZONES = {
    "United States": "America/New_York",
    "Canada": "America/Toronto",
    "United Kingdom": "Europe/London",
    "Germany": "Europe/Berlin",
    "France": "Europe/Paris",
    "Japan": "Asia/Tokyo",
    "Australia": "Australia/Sydney",
}

COUNTRY_REGIONS = {
    "United States": "AMER",
    "Canada": "AMER",
    "Mexico": "AMER",
    "Brazil": "AMER",
    "United Kingdom": "EMEA",
    "Germany": "EMEA",
    "France": "EMEA",
    "Italy": "EMEA",
    "Spain": "EMEA",
    "South Africa": "EMEA",
    "Japan": "APAC",
    "China": "APAC",
    "India": "APAC",
    "Australia": "APAC",
    "Singapore": "APAC",
}

B2B_INDUSTRIES = (
    "technology", "manufacturing", "consulting", "financial services",
    "healthcare", "education", "government", "energy",
)
B2C_INDUSTRIES = (
    "retail", "entertainment", "food & beverage", "travel",
    "consumer products", "real estate",
)

TECHNOLOGY_CATEGORIES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Web Development", ("react", "angular", "vue", "javascript", "html", "css", "node.js")),
    ("Mobile Development", ("ios", "android", "react native", "flutter", "swift", "kotlin")),
    ("Cloud & DevOps", ("aws", "azure", "gcp", "docker", "kubernetes", "jenkins")),
    ("Data & Analytics", ("python", "r", "sql", "tableau", "power bi", "spark")),
    ("Enterprise", ("salesforce", "sap", "oracle", "microsoft", ".net", "java")),
)

HIGH_VALUE_INDUSTRIES = ("Technology", "Finance", "Healthcare")


def dialing_country(phone: Any) -> Optional[Tuple[str, str]]:
    """Return ``(country_code, country)`` for a phone number, or None."""
    digits = phone_digits(phone)
    if not digits:
        return None
    if digits.startswith("1") and len(digits) == 11:
        return "+1", "United States"
    for prefix, country in _DIALING_PREFIXES:
        if digits.startswith(prefix):
            return f"+{prefix}", country
    return None


def business_type_for(industry: str) -> str:
    lowered = industry.lower()
    if any(name in lowered for name in B2B_INDUSTRIES):
        return "B2B"
    if any(name in lowered for name in B2C_INDUSTRIES):
        return "B2C"
    return "Unknown"


def categorize_technologies(technologies: List[str]) -> str:
    for category, names in TECHNOLOGY_CATEGORIES:
        for tech in technologies:
            lowered = tech.lower().strip()
            # single-letter names ("R") must match the whole token
            if any(name == lowered if len(name) < 2 else name in lowered for name in names):
                return category
    return "Other"


def lead_score(record: Dict[str, Any]) -> float:
    score = 5.0

    if record.get("email"):
        score += 1.0
    if record.get("company"):
        score += 0.5
    if record.get("website"):
        score += 0.5

    bracket = (record.get("employee_size_bracket") or "").lower()
    if bracket:
        if "200+" in bracket or "500+" in bracket:
            score += 2.0
        elif "50-200" in bracket or "51-200" in bracket:
            score += 1.5
        elif "11-50" in bracket:
            score += 1.0
        else:
            score += 0.5

    industry = record.get("industry")
    if industry:
        score += 1.0 if industry in HIGH_VALUE_INDUSTRIES else 0.5

    technologies = record.get("technologies") or []
    if technologies:
        score += min(len(technologies) * 0.1, 0.5)

    profile = ("full_name", "title", "email", "company", "mobile_phone", "industry", "country")
    completeness = sum(1 for name in profile if record.get(name)) / len(profile)
    score += completeness * 0.5

    return min(round(score * 10) / 10, 10.0)


def enrich_contact(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``record`` with derived attributes filled in."""
    enriched = dict(record)

    if enriched.get("email") and not enriched.get("email_domain"):
        domain = email_domain(enriched["email"])
        if domain:
            enriched["email_domain"] = domain

    phone = enriched.get("mobile_phone")
    if phone:
        dialing = dialing_country(phone)
        if dialing:
            code, country = dialing
            enriched.setdefault("country_code", code)
            if not enriched.get("country"):
                enriched["country"] = country

    country = enriched.get("country")
    if country:
        if not enriched.get("timezone"):
            enriched["timezone"] = COUNTRY_TIMEZONES.get(country, "UTC")
        if not enriched.get("region"):
            enriched["region"] = COUNTRY_REGIONS.get(country, "Other")

    if enriched.get("industry") and not enriched.get("business_type"):
        enriched["business_type"] = business_type_for(enriched["industry"])

    if enriched.get("technologies") and not enriched.get("technology_category"):
        enriched["technology_category"] = categorize_technologies(enriched["technologies"])

    enriched["lead_score"] = lead_score(enriched)
    return enriched
