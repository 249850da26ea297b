"""
Unit Tests for Phone Normalizer
Canonical phone keys shared by WhatsApp ids, submissions and leads
"""
import logging

import pytest

from leadsync.domain.services.phone_normalizer import (
    PhoneFlag,
    extract_phone_from_whatsapp_id,
    format_phone_for_display,
    is_valid_brazilian_phone,
    normalize_phone,
    phones_match,
    resolve_phone,
)


class TestNormalizePhone:
    """Length rules and cleaning order"""

    @pytest.mark.parametrize("raw", [
        "31999972368",
        "+55 31 99997-2368",
        "(31) 99997-2368",
        "5531999972368",
        "5531999972368@s.whatsapp.net",
        "0031999972368",
    ])
    def test_same_person_same_key(self, raw):
        """Every spelling of one number resolves to one key"""
        assert normalize_phone(raw) == "+5531999972368"

    def test_ten_digits_gets_mobile_prefix(self):
        """DDD + 8 digits gains country code and the 9"""
        assert normalize_phone("3192267220") == "+5531992267220"

    def test_twelve_digits_with_country_code(self):
        """55 + DDD + 8 digits gains the 9 after the DDD"""
        assert normalize_phone("553192267220@s.whatsapp.net") == "+5531992267220"

    def test_canonical_input_unchanged(self):
        assert normalize_phone("+5531992267220") == "+5531992267220"

    def test_suffix_stripped_before_digits(self):
        """Digits after the @ never leak into the key"""
        assert normalize_phone("31999972368@c.us.123") == "+5531999972368"

    @pytest.mark.parametrize("raw", [None, ""])
    def test_empty_input(self, raw):
        assert normalize_phone(raw) == ""

    def test_idempotent(self):
        once = normalize_phone("31 9 9997-2368")
        assert normalize_phone(once) == once


class TestResolvePhone:
    """Flags and warnings for values that cannot be completed"""

    def test_ok_flag(self):
        resolution = resolve_phone("31999972368")
        assert resolution.flag == PhoneFlag.OK
        assert resolution.is_canonical
        assert resolution.digits == "5531999972368"

    def test_empty_flag(self):
        assert resolve_phone(None).flag == PhoneFlag.EMPTY

    def test_eight_digits_is_ambiguous(self, caplog):
        """Unknown DDD: best effort plus a warning"""
        with caplog.at_level(logging.WARNING):
            resolution = resolve_phone("99972368")

        assert resolution.flag == PhoneFlag.AMBIGUOUS
        assert resolution.canonical == "+99972368"
        assert "unknown DDD" in caplog.text

    def test_unexpected_length(self, caplog):
        with caplog.at_level(logging.WARNING):
            resolution = resolve_phone("1234567")

        assert resolution.flag == PhoneFlag.UNEXPECTED
        assert resolution.canonical == "+1234567"
        assert "Unexpected length" in caplog.text

    def test_thirteen_digits_without_country_code_is_unexpected(self):
        assert resolve_phone("4431999972368").flag == PhoneFlag.UNEXPECTED


class TestPhoneHelpers:
    """WhatsApp id extraction, matching, validation and display"""

    def test_extract_from_whatsapp_id(self):
        assert extract_phone_from_whatsapp_id("553192267220@s.whatsapp.net") == "+5531992267220"

    def test_phones_match_across_formats(self):
        assert phones_match("(31) 99997-2368", "5531999972368@s.whatsapp.net")
        assert not phones_match("31999972368", "31999972369")

    def test_valid_brazilian_phone(self):
        assert is_valid_brazilian_phone("31999972368")
        assert not is_valid_brazilian_phone("99972368")

    def test_format_for_display(self):
        assert format_phone_for_display("31999972368") == "+55 31 99997-2368"

    def test_format_for_display_non_canonical(self):
        assert format_phone_for_display("1234567") == "+1234567"
