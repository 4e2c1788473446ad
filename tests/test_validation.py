"""Input validation and normalisation helpers."""

import pytest

from passkeys.errors import ValidationError
from passkeys.validation import (
    normalize_recovery_code,
    sanitize_string,
    validate_email,
    validate_label,
    validate_origin,
    validate_rp_id,
)


class TestEmail:
    @pytest.mark.parametrize("email", ["a@example.com", "first.last+tag@sub.example.org"])
    def test_valid(self, email):
        validate_email(email)

    @pytest.mark.parametrize(
        "email",
        [
            "",
            "plain",
            "a@b",
            "a b@example.com",
            "a@" + "x" * 255 + ".com",
            "a@b..c",
            "a@-bad-.com",
            "a@b.c.",
            "x@y.z\u200b",
            '"@x.y',
        ],
    )
    def test_invalid(self, email):
        with pytest.raises(ValidationError):
            validate_email(email)

    def test_reason_is_reported(self):
        with pytest.raises(ValidationError, match="Invalid email format") as exc_info:
            validate_email("a@b..c")
        assert exc_info.value.details["reason"]


class TestLabel:
    def test_sanitises(self):
        assert sanitize_string("\tWork\x07 key\n") == "Work key"
        assert validate_label("  YubiKey 5 ") == "YubiKey 5"

    def test_length_limit(self):
        assert validate_label("x" * 100) == "x" * 100
        with pytest.raises(ValidationError, match="too long"):
            validate_label("x" * 101)

    def test_empty_after_sanitising(self):
        with pytest.raises(ValidationError):
            validate_label("\x00\x01  ")


class TestRecoveryCode:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ABCD-EFGH", "ABCDEFGH"),
            (" abcd efgh ", "ABCDEFGH"),
            ("a2b3", "A2B3"),
        ],
    )
    def test_normalises(self, raw, expected):
        assert normalize_recovery_code(raw) == expected

    @pytest.mark.parametrize("raw", ["", " - ", "ABC!DEF", None])
    def test_rejects(self, raw):
        with pytest.raises(ValidationError):
            normalize_recovery_code(raw)


class TestRelyingParty:
    @pytest.mark.parametrize("rp_id", ["localhost", "example.com", "login.my-site.co.uk"])
    def test_valid_rp_ids(self, rp_id):
        validate_rp_id(rp_id)

    @pytest.mark.parametrize("rp_id", ["", "https://example.com", "example", "exa mple.com"])
    def test_invalid_rp_ids(self, rp_id):
        with pytest.raises(ValidationError):
            validate_rp_id(rp_id)

    @pytest.mark.parametrize("origin", ["https://example.com", "http://localhost:8080"])
    def test_valid_origins(self, origin):
        validate_origin(origin)

    @pytest.mark.parametrize("origin", ["", "example.com", "ftp://example.com", "https://"])
    def test_invalid_origins(self, origin):
        with pytest.raises(ValidationError):
            validate_origin(origin)
