"""Tests for payload decoding, field extraction and value cleaning."""

import pytest

from app.services import data_sanitizer


class TestCleanJsonData:

    def test_decodes_string(self):
        assert data_sanitizer.clean_json_data('{"email": "a@b.com"}') == {"email": "a@b.com"}

    def test_drops_empty_values(self):
        data = {"email": "", "cpf": None, "tags": [], "extra": {}, "zero": "0", "count": 0}
        assert data_sanitizer.clean_json_data(data) == {"zero": "0", "count": 0}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", None, 42, ""])
    def test_invalid_payload_is_empty(self, raw):
        assert data_sanitizer.clean_json_data(raw) == {}


class TestExtractField:

    def test_first_present_key_wins(self):
        data = {"user_email": "second@example.com", "email": "first@example.com"}
        assert data_sanitizer.extract_field(data, ("email", "user_email")) == "first@example.com"

    def test_skips_empty_candidates(self):
        data = {"email": "", "user_email": "fallback@example.com"}
        assert data_sanitizer.extract_field(data, ("email", "user_email")) == "fallback@example.com"

    def test_missing_returns_none(self):
        assert data_sanitizer.extract_field({"nome": "Ana"}, ("email",)) is None

    def test_non_dict_returns_none(self):
        assert data_sanitizer.extract_field("email", ("email",)) is None


class TestSanitizers:

    def test_sanitize_email_trims(self):
        assert data_sanitizer.sanitize_email("  ana@example.com ") == "ana@example.com"

    def test_sanitize_email_rejects_invalid(self):
        assert data_sanitizer.sanitize_email("not-an-email") == ""

    def test_clean_identifier(self):
        assert data_sanitizer.clean_identifier("123.456.789-01") == "12345678901"
        assert data_sanitizer.clean_identifier("rf 12a-3") == "RF12A3"

    def test_normalize_auth_code(self):
        assert data_sanitizer.normalize_auth_code("ab12-cd34-ef56") == "AB12CD34EF56"

    def test_sanitize_text_strips_tags(self):
        assert data_sanitizer.sanitize_text("<b>Maria</b>   da  Silva") == "Maria da Silva"

    def test_sanitize_field_value_empty(self):
        assert data_sanitizer.sanitize_field_value(None, data_sanitizer.sanitize_email) == ""
        assert data_sanitizer.sanitize_field_value("", None) == ""

    def test_sanitize_field_value_default(self):
        assert data_sanitizer.sanitize_field_value(" <i>x</i> ") == "x"

    @pytest.mark.parametrize(
        "identifier,valid",
        [("12345678901", True), ("123456", True), ("12345", False), ("123456789012", False), ("", False)],
    )
    def test_is_valid_identifier(self, identifier, valid):
        assert data_sanitizer.is_valid_identifier(identifier) is valid


class TestNormalizeName:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("MARIA DA SILVA", "Maria da Silva"),
            ("joão dos santos", "João dos Santos"),
            ("ana   de  souza", "Ana de Souza"),
            ("DE OLIVEIRA", "De Oliveira"),
            ("anna-maria e costa", "Anna-Maria e Costa"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert data_sanitizer.normalize_name(raw) == expected

    def test_idempotent(self):
        once = data_sanitizer.normalize_name("JOSÉ DAS NEVES")
        assert data_sanitizer.normalize_name(once) == once
