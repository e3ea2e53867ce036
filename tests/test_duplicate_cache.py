"""
Tests for the per-job duplicate cache.
"""
import pytest

from crm_app.domain.imports.duplicate_cache import (
    CachedEntity,
    DuplicateCache,
    company_keys,
    contact_keys,
    fill_empty_patch,
)
from crm_app.domain.imports.field_catalog import EntityType


def test_contact_keys():
    assert contact_keys({"email": "Jane@Acme.io", "full_name": "Jane  Doe", "company": "Acme"}) == [
        "jane@acme.io",
        "jane doe:acme",
    ]
    # the composite needs both parts
    assert contact_keys({"full_name": "Jane Doe"}) == []


def test_company_keys():
    keys = company_keys({"name": "Acme Inc", "website": "https://www.acme.io", "domains": ["acme.com"]})
    assert keys == ["acme.com", "acme.io", "name:acme inc"]


def test_fill_empty_patch_never_overwrites():
    existing = {"full_name": "Jane Doe", "title": "", "city": None, "technologies": []}
    incoming = {"full_name": "Janet Doe", "title": "CTO", "city": "Paris", "technologies": ["AWS"], "state": ""}

    assert fill_empty_patch(existing, incoming) == {"title": "CTO", "city": "Paris", "technologies": ["AWS"]}


class TestDuplicateCache:
    def test_build_indexes_recent_contacts(self, store):
        store.bulk_insert("contact", [
            {"full_name": "Jane Doe", "email": "jane@acme.io", "company": "Acme"},
            {"full_name": "Bob Roe", "company": "Initech"},
        ])

        cache = DuplicateCache.build(store, EntityType.CONTACT, limit=100)

        assert cache.find({"email": "JANE@acme.io"}).data["full_name"] == "Jane Doe"
        assert cache.find({"full_name": "bob roe", "company": "INITECH"}).data["full_name"] == "Bob Roe"
        assert cache.find({"email": "nobody@acme.io"}) is None

    def test_email_has_priority_over_composite(self, store):
        store.bulk_insert("contact", [
            {"full_name": "Jane Doe", "email": "jane@acme.io", "company": "Acme"},
            {"full_name": "Other Person", "email": "other@acme.io", "company": "Acme"},
        ])
        cache = DuplicateCache.build(store, EntityType.CONTACT, limit=100)

        match = cache.find({"email": "other@acme.io", "full_name": "Jane Doe", "company": "Acme"})

        assert match.data["email"] == "other@acme.io"

    def test_cache_miss_falls_back_to_one_store_lookup(self, store):
        store.bulk_insert("contact", [{"full_name": "Old Contact", "email": "old@acme.io"}])
        cache = DuplicateCache.build(store, EntityType.CONTACT, limit=0)
        assert len(cache) == 0

        added = cache.prefetch([{"email": "old@acme.io"}, {"email": "new@acme.io"}])

        assert added == 1
        assert cache.store_lookups == 1
        assert cache.find({"email": "old@acme.io"}).id is not None

        # keys already looked up are not queried again
        cache.prefetch([{"email": "new@acme.io"}])
        assert cache.store_lookups == 1

    def test_lookup_on_miss_can_be_disabled(self, store):
        store.bulk_insert("contact", [{"full_name": "Old Contact", "email": "old@acme.io"}])
        cache = DuplicateCache.build(store, EntityType.CONTACT, limit=0, lookup_on_miss=False)

        assert cache.prefetch([{"email": "old@acme.io"}]) == 0
        assert cache.find({"email": "old@acme.io"}) is None

    def test_failed_lookup_is_retried_on_next_prefetch(self, store, monkeypatch):
        store.bulk_insert("contact", [{"full_name": "Old Contact", "email": "old@acme.io"}])
        cache = DuplicateCache.build(store, EntityType.CONTACT, limit=0)
        working_lookup = store.find_contacts_by_emails

        def unavailable(emails):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(store, "find_contacts_by_emails", unavailable)
        with pytest.raises(RuntimeError):
            cache.prefetch([{"email": "old@acme.io"}])
        assert cache.store_lookups == 0

        monkeypatch.setattr(store, "find_contacts_by_emails", working_lookup)
        assert cache.prefetch([{"email": "old@acme.io"}]) == 1
        assert cache.find({"email": "old@acme.io"}) is not None

    def test_company_lookup_by_domain_and_name(self, store):
        store.bulk_insert("company", [
            {"name": "Acme", "website": "https://acme.io", "domains": ["acme.io"]},
            {"name": "Initech"},
        ])
        cache = DuplicateCache(EntityType.COMPANY, store)

        cache.prefetch([
            {"name": "ACME Corp", "domains": ["acme.io"]},
            {"name": "initech"},
        ])

        assert cache.store_lookups == 2
        assert cache.find({"name": "Something", "domains": ["acme.io"]}).data["name"] == "Acme"
        assert cache.find({"name": "Initech"}).data["name"] == "Initech"

    def test_staged_records_are_visible_and_removable(self):
        cache = DuplicateCache(EntityType.CONTACT)
        staged = CachedEntity(id=None, data={"email": "new@acme.io"}, staged=True)

        cache.add(staged)
        assert cache.find({"email": "new@acme.io"}) is staged

        cache.remove(staged)
        assert cache.find({"email": "new@acme.io"}) is None
