"""
Tests for per-batch categorization and persistence.
"""
import pytest

from crm_app.domain.imports import batch_processor
from crm_app.domain.imports.batch_processor import BatchProcessor, ImportOptions
from crm_app.domain.imports.duplicate_cache import DuplicateCache
from crm_app.domain.imports.field_catalog import EntityType

CONTACT_MAPPING = {
    "Name": "full_name",
    "Email": "email",
    "Company": "company",
    "Title": "title",
    "City": "city",
}


def _row(name="", email="", company="", title="", city=""):
    return {"Name": name, "Email": email, "Company": company, "Title": title, "City": city}


def _processor(store, *, mapping=CONTACT_MAPPING, cache_limit=1000, **option_values):
    options = ImportOptions(**option_values)
    cache = None
    if options.duplicate_policy != "off":
        cache = DuplicateCache.build(store, options.entity_type, limit=cache_limit)
    return BatchProcessor(store, mapping, options, cache=cache, update_workers=2)


def _contacts(store):
    return {contact["email"]: contact for contact in store.list_recent("contact", 100)}


class TestImportOptions:
    def test_duplicate_policy(self):
        assert ImportOptions(update_existing=True, skip_duplicates=True).duplicate_policy == "merge"
        assert ImportOptions(update_existing=True, skip_duplicates=False).duplicate_policy == "merge"
        assert ImportOptions().duplicate_policy == "skip"
        assert ImportOptions(skip_duplicates=False).duplicate_policy == "off"

    def test_from_dict_ignores_unknown_keys(self):
        options = ImportOptions.from_dict({"entity_type": "company", "auto_enrich": True, "bogus": 1})

        assert options.entity_type is EntityType.COMPANY
        assert options.auto_enrich is True
        assert options.to_dict()["entity_type"] == "company"

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ImportOptions(batch_size=0)

    def test_cache_required_unless_detection_is_off(self, store):
        with pytest.raises(ValueError):
            BatchProcessor(store, CONTACT_MAPPING, ImportOptions())


class TestSkipPolicy:
    def test_counts_add_up(self, store):
        store.bulk_insert("contact", [{"full_name": "Existing", "email": "existing@acme.io"}])
        processor = _processor(store)

        result = processor.process(
            [
                _row("Jane Doe", "jane@acme.io"),
                _row(company="No Name Or Email"),
                _row("Existing Again", "existing@acme.io"),
                _row("Jane Again", "JANE@acme.io"),
            ],
            start_row=11,
        )

        stats = result.stats
        assert (stats.processed, stats.successful, stats.errors, stats.duplicates, stats.updated) == (4, 1, 1, 2, 0)
        assert stats.is_consistent()
        assert [(error.row, error.message) for error in result.errors] == [
            (12, "Missing required fields: name or email"),
        ]
        assert set(_contacts(store)) == {"existing@acme.io", "jane@acme.io"}

    def test_inserted_rows_are_seen_by_later_batches(self, store):
        processor = _processor(store)

        first = processor.process([_row("Jane Doe", "jane@acme.io")])
        second = processor.process([_row("Jane Doe", "jane@acme.io")], start_row=2)

        assert first.stats.successful == 1
        assert second.stats.duplicates == 1
        assert len(store.list_recent("contact", 10)) == 1

    def test_store_lookup_catches_contacts_outside_the_preload(self, store):
        store.bulk_insert("contact", [{"full_name": "Old", "email": "old@acme.io"}])
        processor = _processor(store, cache_limit=0)

        result = processor.process([_row("Old", "old@acme.io")])

        assert result.stats.duplicates == 1
        assert result.stats.successful == 0


class TestMergePolicy:
    def test_fills_only_empty_fields(self, store):
        store.bulk_insert("contact", [
            {"full_name": "Jane Doe", "email": "jane@acme.io", "title": "CEO"},
        ])
        processor = _processor(store, update_existing=True)

        result = processor.process([_row("Janet Doe", "jane@acme.io", company="Acme", title="CTO")])

        assert result.stats.updated == 1
        assert result.stats.successful == 0
        jane = _contacts(store)["jane@acme.io"]
        assert jane["full_name"] == "Jane Doe"
        assert jane["title"] == "CEO"
        assert jane["company"] == "Acme"

    def test_nothing_to_fill_counts_as_duplicate(self, store):
        store.bulk_insert("contact", [{"full_name": "Jane Doe", "email": "jane@acme.io", "title": "CEO"}])
        processor = _processor(store, update_existing=True)

        result = processor.process([_row("Jane Doe", "jane@acme.io", title="CTO")])

        assert result.stats.duplicates == 1
        assert result.stats.updated == 0

    def test_updates_to_one_entity_are_coalesced(self, store, monkeypatch):
        store.bulk_insert("contact", [{"full_name": "Jane Doe", "email": "jane@acme.io"}])
        processor = _processor(store, update_existing=True)
        calls = []
        original_update = store.update

        def counting_update(kind, entity_id, patch):
            calls.append(dict(patch))
            return original_update(kind, entity_id, patch)

        monkeypatch.setattr(store, "update", counting_update)

        result = processor.process([
            _row("Jane Doe", "jane@acme.io", title="CTO"),
            _row("Jane Doe", "jane@acme.io", city="Paris"),
        ])

        assert result.stats.updated == 2
        assert result.stats.is_consistent()
        assert calls == [{"title": "CTO", "city": "Paris"}]
        jane = _contacts(store)["jane@acme.io"]
        assert (jane["title"], jane["city"]) == ("CTO", "Paris")

    def test_merge_into_record_staged_in_same_batch(self, store):
        processor = _processor(store, update_existing=True)

        result = processor.process([
            _row("Jane Doe", "jane@acme.io"),
            _row("Jane Doe", "jane@acme.io", title="CTO"),
        ])

        assert (result.stats.successful, result.stats.updated) == (1, 1)
        contacts = store.list_recent("contact", 10)
        assert len(contacts) == 1
        assert contacts[0]["title"] == "CTO"

    def test_failed_update_is_an_error_for_each_row(self, store, monkeypatch):
        store.bulk_insert("contact", [{"full_name": "Jane Doe", "email": "jane@acme.io"}])
        processor = _processor(store, update_existing=True)

        def broken_update(kind, entity_id, patch):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(store, "update", broken_update)

        result = processor.process([
            _row("Jane Doe", "jane@acme.io", title="CTO"),
            _row("Jane Doe", "jane@acme.io", city="Paris"),
        ], start_row=5)

        assert result.stats.errors == 2
        assert result.stats.updated == 0
        assert [error.row for error in result.errors] == [5, 6]
        assert all("connection reset" in error.message for error in result.errors)

    def test_failed_update_leaves_cache_unchanged(self, store, monkeypatch):
        store.bulk_insert("contact", [{"full_name": "Jane Doe", "email": "jane@acme.io"}])
        processor = _processor(store, update_existing=True)
        working_update = store.update

        def broken_update(kind, entity_id, patch):
            raise RuntimeError("db down")

        monkeypatch.setattr(store, "update", broken_update)
        first = processor.process([_row("Jane Doe", "jane@acme.io", title="CTO")])
        assert first.stats.errors == 1
        assert processor.cache.find({"email": "jane@acme.io"}).data.get("title") is None

        monkeypatch.setattr(store, "update", working_update)
        second = processor.process([_row("Jane Doe", "jane@acme.io", title="CTO")], start_row=2)

        assert second.stats.updated == 1
        assert second.stats.duplicates == 0
        assert _contacts(store)["jane@acme.io"]["title"] == "CTO"

    def test_vanished_entity_is_an_error(self, store, monkeypatch):
        store.bulk_insert("contact", [{"full_name": "Jane Doe", "email": "jane@acme.io"}])
        processor = _processor(store, update_existing=True)
        monkeypatch.setattr(store, "update", lambda kind, entity_id, patch: False)

        result = processor.process([_row("Jane Doe", "jane@acme.io", title="CTO")])

        assert result.stats.errors == 1
        assert "no longer exists" in result.errors[0].message


class TestDetectionOff:
    def test_every_valid_row_is_inserted(self, store):
        store.bulk_insert("contact", [{"full_name": "Jane Doe", "email": "jane@acme.io"}])
        processor = _processor(store, skip_duplicates=False)

        result = processor.process([
            _row("Jane Doe", "jane@acme.io"),
            _row("Jane Doe", "jane@acme.io"),
            _row(),
        ])

        assert (result.stats.successful, result.stats.duplicates, result.stats.errors) == (2, 0, 1)
        assert len(store.list_recent("contact", 10)) == 3


class TestInsertFallback:
    def test_bulk_failure_retries_individually(self, store, monkeypatch):
        processor = _processor(store)
        original_insert = store.insert

        def broken_bulk_insert(kind, records):
            raise RuntimeError("batch rejected")

        def picky_insert(kind, record):
            if record.get("email") == "bad@acme.io":
                raise RuntimeError("value too long")
            return original_insert(kind, record)

        monkeypatch.setattr(store, "bulk_insert", broken_bulk_insert)
        monkeypatch.setattr(store, "insert", picky_insert)

        result = processor.process([
            _row("Good One", "good@acme.io"),
            _row("Bad One", "bad@acme.io"),
            _row("Good Two", "good2@acme.io"),
        ])

        assert (result.stats.successful, result.stats.errors) == (2, 1)
        assert result.errors[0].row == 2
        assert "value too long" in result.errors[0].message
        assert set(_contacts(store)) == {"good@acme.io", "good2@acme.io"}
        # the failed record is no longer treated as existing
        assert processor.cache.find({"email": "bad@acme.io"}) is None

    def test_failed_insert_fails_the_rows_merged_into_it(self, store, monkeypatch):
        processor = _processor(store, update_existing=True)

        def broken(*args, **kwargs):
            raise RuntimeError("database is down")

        monkeypatch.setattr(store, "bulk_insert", broken)
        monkeypatch.setattr(store, "insert", broken)

        result = processor.process([
            _row("Jane Doe", "jane@acme.io"),
            _row("Jane Doe", "jane@acme.io", title="CTO"),
        ])

        assert result.stats.errors == 2
        assert result.stats.is_consistent()

    def test_rows_without_returned_ids_are_errors(self, store, monkeypatch):
        processor = _processor(store)
        original_bulk_insert = store.bulk_insert

        def short_bulk_insert(kind, records):
            return original_bulk_insert(kind, records[:1])

        monkeypatch.setattr(store, "bulk_insert", short_bulk_insert)

        result = processor.process([
            _row("Jane Doe", "jane@acme.io"),
            _row("Bob Roe", "bob@acme.io"),
        ], start_row=7)

        assert (result.stats.successful, result.stats.errors) == (1, 1)
        assert result.stats.is_consistent()
        assert (result.errors[0].row, result.errors[0].message) == (8, "Insert failed: no id returned")
        assert processor.cache.find({"email": "bob@acme.io"}) is None


class TestStoreLookupFailures:
    def test_lookup_failure_resolves_from_cache(self, store, monkeypatch):
        store.bulk_insert("contact", [{"full_name": "Cached", "email": "cached@acme.io"}])
        processor = _processor(store)

        def unavailable(emails):
            raise RuntimeError("transient store failure")

        monkeypatch.setattr(store, "find_contacts_by_emails", unavailable)

        result = processor.process([
            _row("Cached Again", "cached@acme.io"),
            _row("New Person", "new@acme.io"),
        ])

        assert (result.stats.successful, result.stats.duplicates, result.stats.errors) == (1, 1, 0)
        assert set(_contacts(store)) == {"cached@acme.io", "new@acme.io"}

    def test_enrichment_failure_is_a_row_error(self, store, monkeypatch):
        processor = _processor(store, auto_enrich=True)
        real_enrich = batch_processor.enrich_contact

        def flaky_enrich(data):
            if data.get("email") == "bad@acme.io":
                raise ValueError("bad phone data")
            return real_enrich(data)

        monkeypatch.setattr(batch_processor, "enrich_contact", flaky_enrich)

        result = processor.process([
            _row("Good One", "good@acme.io"),
            _row("Bad One", "bad@acme.io"),
        ])

        assert (result.stats.successful, result.stats.errors) == (1, 1)
        assert result.errors[0].row == 2
        assert "bad phone data" in result.errors[0].message


class TestEnrichmentAndCompanies:
    def test_auto_enrich_adds_derived_fields(self, store):
        processor = _processor(store, auto_enrich=True)

        processor.process([_row("Jane Doe", "jane@acme.io", company="Acme")])

        jane = _contacts(store)["jane@acme.io"]
        assert jane["email_domain"] == "acme.io"
        assert jane["lead_score"] is not None

    def test_company_duplicates_by_domain(self, store):
        store.bulk_insert("company", [{"name": "Acme", "website": "https://acme.io", "domains": ["acme.io"]}])
        processor = _processor(
            store,
            mapping={"Company": "name", "Website": "website"},
            entity_type="company",
        )

        result = processor.process([
            {"Company": "Acme Corporation", "Website": "www.acme.io"},
            {"Company": "Initech", "Website": "initech.com"},
            {"Company": "initech", "Website": ""},
        ])

        assert (result.stats.successful, result.stats.duplicates) == (1, 2)
        names = sorted(company["name"] for company in store.list_recent("company", 10))
        assert names == ["Acme", "Initech"]
