"""
Row-level coercion and validation for imported records.

``transform_row`` turns one raw CSV row (header -> cell text) into a canonical
record using the header mapping. Cells that cannot be coerced are dropped on
their own; the row is rejected only when it lacks the identity fields its
entity type needs.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from crm_app.domain.imports.field_catalog import (
    CONTACT_CATALOG,
    EntityType,
    FieldCatalog,
    FieldKind,
)
from crm_app.utils.domains import extract_domain
from crm_app.utils.phone import normalize_phone

MAX_EMAIL_LENGTH = 254

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_LIST_SEPARATORS = re.compile(r"[;,|]")
_WHITESPACE = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D")
_NON_DECIMAL = re.compile(r"[^\d.]")


@dataclass(frozen=True)
class RejectedRow:
    row: int
    reason: str


@dataclass
class TransformedRecord:
    row: int
    data: Dict[str, Any]


TransformResult = Union[TransformedRecord, RejectedRow]


def _clean_text(value: str) -> Optional[str]:
    cleaned = _WHITESPACE.sub(" ", value).strip()
    return cleaned or None


def _coerce_integer(value: str) -> Optional[int]:
    digits = _NON_DIGITS.sub("", value)
    return int(digits) if digits else None


def _coerce_decimal(value: str) -> Optional[float]:
    cleaned = _NON_DECIMAL.sub("", value)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _coerce_email(value: str) -> Optional[str]:
    email = value.strip().lower()
    if len(email) > MAX_EMAIL_LENGTH or not _EMAIL_RE.match(email):
        return None
    return email


def _coerce_list(value: str) -> Optional[List[str]]:
    tokens = [token.strip() for token in _LIST_SEPARATORS.split(value)]
    tokens = [token for token in tokens if token]
    return tokens or None


def coerce_value(kind: FieldKind, raw: Any) -> Any:
    """Coerce one cell for a field of ``kind``. Returns None when it should be dropped."""
    if raw is None:
        return None
    text = str(raw)
    if not text.strip():
        return None

    if kind == FieldKind.INTEGER:
        return _coerce_integer(text)
    if kind == FieldKind.DECIMAL:
        return _coerce_decimal(text)
    if kind == FieldKind.EMAIL:
        return _coerce_email(text)
    if kind == FieldKind.PHONE:
        return normalize_phone(text)
    if kind == FieldKind.LIST:
        return _coerce_list(text)
    return _clean_text(text)


def _merge_domains(record: Dict[str, Any]) -> None:
    domain = extract_domain(record.get("website"))
    domains = [extract_domain(item) or item.lower() for item in record.get("domains") or []]
    if domain:
        domains.insert(0, domain)
    if domains:
        record["domains"] = list(dict.fromkeys(domains))


def transform_row(
    raw_row: Mapping[str, Any],
    mapping: Mapping[str, str],
    *,
    row_index: int,
    catalog: FieldCatalog = CONTACT_CATALOG,
) -> TransformResult:
    """
    Build a canonical record from ``raw_row``.

    Args:
        raw_row: Header -> raw cell value
        mapping: Header -> canonical field name
        row_index: 1-based data row number, used in rejection reasons
        catalog: Field catalog of the entity being imported
    """
    record: Dict[str, Any] = {}

    for header, field_name in mapping.items():
        if field_name in record:
            continue
        canonical = catalog.get(field_name)
        if canonical is None:
            continue
        value = coerce_value(canonical.kind, raw_row.get(header))
        if value is not None:
            record[field_name] = value

    if catalog.entity_type == EntityType.CONTACT:
        if not record.get("full_name"):
            parts = [record.get("first_name"), record.get("last_name")]
            joined = " ".join(part for part in parts if part)
            if joined:
                record["full_name"] = joined
        if not any(record.get(name) for name in catalog.identity_fields):
            return RejectedRow(row=row_index, reason="Missing required fields: name or email")
    else:
        if not record.get("name"):
            return RejectedRow(row=row_index, reason="Missing required field: company name")
        _merge_domains(record)

    return TransformedRecord(row=row_index, data=record)
