"""
Tests for row coercion and validation.
"""
import pytest

from crm_app.domain.imports.field_catalog import COMPANY_CATALOG, FieldKind
from crm_app.domain.imports.transformer import (
    RejectedRow,
    TransformedRecord,
    coerce_value,
    transform_row,
)


def _contact(row, mapping=None, index=1):
    mapping = mapping or {header: header for header in row}
    return transform_row(row, mapping, row_index=index)


class TestCoerceValue:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1,200 employees", 1200),
            ("  42 ", 42),
            ("n/a", None),
        ],
    )
    def test_integer(self, raw, expected):
        assert coerce_value(FieldKind.INTEGER, raw) == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("$1,500.50", 1500.5),
            ("2000", 2000.0),
            ("abc", None),
            ("1.2.3", None),
        ],
    )
    def test_decimal(self, raw, expected):
        assert coerce_value(FieldKind.DECIMAL, raw) == expected

    def test_email_is_lowercased_and_validated(self):
        assert coerce_value(FieldKind.EMAIL, "  Jane.Doe@Example.COM ") == "jane.doe@example.com"
        assert coerce_value(FieldKind.EMAIL, "not-an-email") is None
        assert coerce_value(FieldKind.EMAIL, "a@b") is None
        assert coerce_value(FieldKind.EMAIL, "x" * 250 + "@example.com") is None

    def test_phone_digit_count(self):
        assert coerce_value(FieldKind.PHONE, "(415) 555-1234") == "4155551234"
        assert coerce_value(FieldKind.PHONE, "+44 20 7946 1234") == "+442079461234"
        assert coerce_value(FieldKind.PHONE, "555-1234") is None
        assert coerce_value(FieldKind.PHONE, "1234567890123456") is None
        assert coerce_value(FieldKind.PHONE, "abc") is None

    def test_list_split(self):
        assert coerce_value(FieldKind.LIST, "React; AWS | Python,,") == ["React", "AWS", "Python"]
        assert coerce_value(FieldKind.LIST, " ; , ") is None

    def test_text_whitespace_collapsed(self):
        assert coerce_value(FieldKind.TEXT, "  Head   of\tSales ") == "Head of Sales"
        assert coerce_value(FieldKind.TEXT, "   ") is None
        assert coerce_value(FieldKind.TEXT, None) is None


class TestContactRows:
    def test_email_only_row_is_accepted(self):
        result = transform_row({"E-mail": "Jane@Example.com"}, {"E-mail": "email"}, row_index=3)

        assert isinstance(result, TransformedRecord)
        assert result.row == 3
        assert result.data == {"email": "jane@example.com"}
        assert "full_name" not in result.data

    def test_malformed_phone_is_dropped_without_rejecting(self):
        result = _contact(
            {"Name": "Jane Doe", "Phone": "abc"},
            {"Name": "full_name", "Phone": "mobile_phone"},
        )

        assert isinstance(result, TransformedRecord)
        assert result.data == {"full_name": "Jane Doe"}

    def test_full_name_is_synthesized(self):
        result = _contact(
            {"First": "Jane", "Last": "Doe"},
            {"First": "first_name", "Last": "last_name"},
        )
        assert result.data["full_name"] == "Jane Doe"

        only_last = _contact({"Last": "Doe"}, {"Last": "last_name"})
        assert only_last.data["full_name"] == "Doe"

    def test_row_without_name_or_email_is_rejected(self):
        result = _contact(
            {"Company": "Acme", "Email": "broken"},
            {"Company": "company", "Email": "email"},
            index=7,
        )

        assert isinstance(result, RejectedRow)
        assert result.row == 7
        assert "name or email" in result.reason

    def test_first_non_empty_value_wins(self):
        mapping = {"Email": "email", "Work Email": "email"}

        blank_first = _contact({"Email": "", "Work Email": "work@acme.io"}, mapping)
        assert blank_first.data["email"] == "work@acme.io"

        both = _contact({"Email": "home@me.io", "Work Email": "work@acme.io"}, mapping)
        assert both.data["email"] == "home@me.io"

    def test_unknown_fields_and_missing_headers_are_ignored(self):
        result = _contact(
            {"Name": "Jane"},
            {"Name": "full_name", "Ghost": "email", "Other": "not_a_field"},
        )
        assert result.data == {"full_name": "Jane"}

    def test_typed_fields(self):
        result = _contact(
            {
                "Name": "Jane",
                "Employees": "250",
                "Revenue": "$2.5",
                "Stack": "React, AWS",
            },
            {
                "Name": "full_name",
                "Employees": "employees",
                "Revenue": "annual_revenue",
                "Stack": "technologies",
            },
        )
        assert result.data == {
            "full_name": "Jane",
            "employees": 250,
            "annual_revenue": 2.5,
            "technologies": ["React", "AWS"],
        }


class TestCompanyRows:
    def test_domain_derived_from_website(self):
        result = transform_row(
            {"Company": "Acme", "Site": "https://www.Acme.io/about"},
            {"Company": "name", "Site": "website"},
            row_index=1,
            catalog=COMPANY_CATALOG,
        )

        assert result.data["domains"] == ["acme.io"]
        assert result.data["website"] == "https://www.Acme.io/about"

    def test_explicit_domains_are_merged(self):
        result = transform_row(
            {"Company": "Acme", "Site": "www.acme.io", "Domains": "acme.io; acme.com"},
            {"Company": "name", "Site": "website", "Domains": "domains"},
            row_index=1,
            catalog=COMPANY_CATALOG,
        )
        assert result.data["domains"] == ["acme.io", "acme.com"]

    def test_company_without_name_is_rejected(self):
        result = transform_row(
            {"Site": "acme.io"},
            {"Site": "website"},
            row_index=4,
            catalog=COMPANY_CATALOG,
        )
        assert isinstance(result, RejectedRow)
        assert result.row == 4
