"""Unit tests for recipient validation and formatting."""

import pytest

from hoa_notify.utils.contacts import format_e164, is_valid_email, is_valid_phone, mask_recipient


class TestIsValidEmail:
    """Tests for is_valid_email function."""

    @pytest.mark.parametrize("address", ["owner@example.com", "board.member+hoa@example.org"])
    def test_valid_addresses(self, address):
        assert is_valid_email(address) is True

    @pytest.mark.parametrize("address", [None, "", "not-an-email", "owner@", "@example.com"])
    def test_invalid_addresses(self, address):
        assert is_valid_email(address) is False


class TestIsValidPhone:
    """Tests for is_valid_phone function."""

    @pytest.mark.parametrize(
        "phone", ["+13035550142", "3035550142", "+1 303 555 0142", "(303) 555-0142"]
    )
    def test_valid_numbers(self, phone):
        assert is_valid_phone(phone) is True

    @pytest.mark.parametrize("phone", [None, "", "abc", "+0123", "12345678901234567"])
    def test_invalid_numbers(self, phone):
        assert is_valid_phone(phone) is False


class TestFormatE164:
    """Tests for format_e164 function."""

    def test_ten_digit_number_gets_country_code(self):
        assert format_e164("(303) 555-0142") == "+13035550142"

    def test_already_formatted(self):
        assert format_e164("+13035550142") == "+13035550142"

    def test_international_number_kept(self):
        assert format_e164("+44 20 7946 0958") == "+442079460958"


class TestMaskRecipient:
    """Tests for mask_recipient function."""

    def test_mask_email(self):
        assert mask_recipient("owner@example.com") == "o***@example.com"

    def test_mask_phone(self):
        assert mask_recipient("+13035550142") == "***0142"

    def test_mask_short_or_empty(self):
        assert mask_recipient("123") == "***"
        assert mask_recipient(None) == ""
