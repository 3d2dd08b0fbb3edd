"""Tests for Luhn, brand and expiry rules."""

from datetime import date

import pytest

from paysys.shared.card_utils import (
    assert_valid_card,
    clean_card_number,
    get_card_brand,
    is_card_expired,
    months_until_expiry,
    validate_card_expiration,
    validate_credit_card_number,
)
from paysys.shared.errors import ValidationError

TODAY = date(2025, 6, 15)


class TestLuhn:
    def test_valid_number(self) -> None:
        assert validate_credit_card_number("4111111111111111")

    def test_single_digit_change_fails(self) -> None:
        assert not validate_credit_card_number("4111111111111112")

    def test_separators_are_ignored(self) -> None:
        assert clean_card_number("4111 1111-1111 1111") == "4111111111111111"
        assert validate_credit_card_number("4111 1111 1111 1111")

    @pytest.mark.parametrize("number", ["", "411111111111", "4" * 20])
    def test_length_bounds(self, number) -> None:
        assert not validate_credit_card_number(number)


class TestBrand:
    @pytest.mark.parametrize(
        "number, brand",
        [
            ("4111111111111111", "visa"),
            ("5555555555554444", "mastercard"),
            ("5105105105105100", "mastercard"),
            ("2221000000000009", "mastercard"),
            ("378282246310005", "amex"),
            ("341111111111111", "amex"),
            ("6362970000457013", "elo"),
            ("6504000000000000", "elo"),
            ("6011111111111117", "unknown"),
            ("", "unknown"),
        ],
    )
    def test_brand_detection(self, number, brand) -> None:
        assert get_card_brand(number) == brand

    def test_visa_wins_over_elo_prefix(self) -> None:
        assert get_card_brand("4011780000000000") == "visa"


class TestExpiry:
    def test_current_month_is_still_valid(self) -> None:
        assert validate_card_expiration("06", "2025", TODAY)
        assert not is_card_expired("06", "2025", TODAY)

    def test_previous_month_is_expired(self) -> None:
        assert is_card_expired("05", "2025", TODAY)
        assert is_card_expired("12", "2024", TODAY)

    def test_months_until_expiry(self) -> None:
        assert months_until_expiry("09", "2025", TODAY) == 3
        assert months_until_expiry("01", "2026", TODAY) == 7
        assert months_until_expiry("03", "2025", TODAY) == -3

    def test_malformed_expiry_is_expired(self) -> None:
        assert is_card_expired("xx", "2030", TODAY)


class TestAssertValidCard:
    def test_returns_brand(self) -> None:
        assert assert_valid_card("5555555555554444", "12", "2030", TODAY) == "mastercard"

    @pytest.mark.parametrize(
        "number, month, year, code",
        [
            ("4111111111111112", "12", "2030", "INVALID_CARD_NUMBER"),
            ("4111111111111111", "01", "2025", "CARD_EXPIRED"),
            ("6011111111111117", "12", "2030", "UNSUPPORTED_CARD_BRAND"),
        ],
    )
    def test_distinct_error_codes(self, number, month, year, code) -> None:
        with pytest.raises(ValidationError) as exc_info:
            assert_valid_card(number, month, year, TODAY)
        assert exc_info.value.code == code
