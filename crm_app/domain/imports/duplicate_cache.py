"""
Per-job in-memory index used to resolve duplicates without a query per row.

The cache is seeded from the most recent entities in the store and grows as the
job runs: store hits found on a cache miss are indexed, and records staged for
insert are indexed immediately so later rows in the same file match them.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from crm_app.domain.imports.field_catalog import EntityType
from crm_app.utils.domains import extract_domain

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

_EMPTY_VALUES = (None, "", [], {})


def _norm(value: Any) -> str:
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip().lower()


def is_empty(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return value in _EMPTY_VALUES


@dataclass(eq=False)
class CachedEntity:
    """A persisted entity, or a record staged for insert (``id`` still None)."""
    id: Optional[str]
    data: Dict[str, Any]
    staged: bool = False
    # data rows that merged into this record while it was still staged
    merged_rows: List[int] = field(default_factory=list)


def contact_keys(record: Dict[str, Any]) -> List[str]:
    """Email first, then the ``full name:company`` composite."""
    keys = []
    email = _norm(record.get("email"))
    if email:
        keys.append(email)
    full_name = _norm(record.get("full_name"))
    company = _norm(record.get("company"))
    if full_name and company:
        keys.append(f"{full_name}:{company}")
    return keys


def company_domains(record: Dict[str, Any]) -> List[str]:
    domains = []
    for value in record.get("domains") or []:
        domain = extract_domain(value) or _norm(value)
        if domain:
            domains.append(domain)
    website_domain = extract_domain(record.get("website"))
    if website_domain:
        domains.append(website_domain)
    return list(dict.fromkeys(domains))


def company_keys(record: Dict[str, Any]) -> List[str]:
    """Every domain first, then ``name:<normalized name>``."""
    keys = company_domains(record)
    name = _norm(record.get("name"))
    if name:
        keys.append(f"name:{name}")
    return keys


class DuplicateCache:
    """Key -> entity index for one import job. Not shared between jobs."""

    def __init__(self, entity_type: EntityType, store=None, *, lookup_on_miss: bool = True):
        self.entity_type = EntityType(entity_type)
        self.store = store
        self.lookup_on_miss = lookup_on_miss and store is not None
        self._index: Dict[str, CachedEntity] = {}
        self._looked_up: set = set()
        self.hits = 0
        self.misses = 0
        self.store_lookups = 0

    @classmethod
    def build(cls, store, entity_type: EntityType, *, limit: int, lookup_on_miss: bool = True) -> "DuplicateCache":
        """Seed a cache with the ``limit`` most recent entities of ``entity_type``."""
        cache = cls(entity_type, store, lookup_on_miss=lookup_on_miss)
        recent = store.list_recent(cache.entity_type.value, limit) if limit > 0 else []
        for data in recent:
            cache.add(CachedEntity(id=data.get("id"), data=data))
        logger.info(
            "Duplicate cache seeded with %d %s records (%d keys)",
            len(recent),
            cache.entity_type.value,
            len(cache._index),
        )
        return cache

    def __len__(self) -> int:
        return len(self._index)

    def keys_for(self, record: Dict[str, Any]) -> List[str]:
        if self.entity_type == EntityType.CONTACT:
            return contact_keys(record)
        return company_keys(record)

    def add(self, entity: CachedEntity) -> None:
        """Index ``entity`` under every key it exposes; existing keys keep their entity."""
        for key in self.keys_for(entity.data):
            self._index.setdefault(key, entity)

    def remove(self, entity: CachedEntity) -> None:
        stale = [key for key, cached in self._index.items() if cached is entity]
        for key in stale:
            del self._index[key]

    def find(self, record: Dict[str, Any]) -> Optional[CachedEntity]:
        for key in self.keys_for(record):
            entity = self._index.get(key)
            if entity is not None:
                self.hits += 1
                return entity
        self.misses += 1
        return None

    def prefetch(self, records: Iterable[Dict[str, Any]]) -> int:
        """
        Look up keys missing from the cache in the store, one query per key type.

        Returns the number of store entities added to the cache.
        """
        if not self.lookup_on_miss:
            return 0

        if self.entity_type == EntityType.CONTACT:
            emails = self._missing(_norm(record.get("email")) for record in records)
            queries = [(self.store.find_contacts_by_emails, emails)]
            requested = emails
        else:
            record_list = list(records)
            domains = self._missing(
                domain for record in record_list for domain in company_domains(record)
            )
            names = self._missing(
                f"name:{_norm(record.get('name'))}" for record in record_list if _norm(record.get("name"))
            )
            queries = [
                (self.store.find_companies_by_domains, domains),
                (self.store.find_companies_by_names, [name[len("name:"):] for name in names]),
            ]
            requested = domains + names

        found = []
        try:
            for query, keys in queries:
                if keys:
                    found.extend(query(keys))
                    self.store_lookups += 1
        except Exception:
            # failed keys stay eligible for a later lookup
            self._looked_up.difference_update(requested)
            raise

        added = 0
        seen_ids = set()
        for data in found:
            entity_id = data.get("id")
            if entity_id in seen_ids:
                continue
            seen_ids.add(entity_id)
            self.add(CachedEntity(id=entity_id, data=data))
            added += 1
        if added:
            logger.debug("Added %d %s records to the duplicate cache from the store", added, self.entity_type.value)
        return added

    def _missing(self, keys: Iterable[str]) -> List[str]:
        missing = []
        for key in keys:
            if not key or key in self._index or key in self._looked_up:
                continue
            self._looked_up.add(key)
            missing.append(key)
        return missing


def fill_empty_patch(existing: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Fields present on ``incoming`` that are empty or absent on ``existing``."""
    patch = {}
    for key, value in incoming.items():
        if key in ("id", "created_at", "updated_at"):
            continue
        if is_empty(value):
            continue
        if is_empty(existing.get(key)):
            patch[key] = value
    return patch
