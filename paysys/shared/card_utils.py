import re
from datetime import date

from paysys.shared.errors import ValidationError

CARD_BRANDS = ("visa", "mastercard", "amex", "elo", "unknown")

_ELO_PREFIX = re.compile(r"^(4011|4312|4389|4514|4573|6277|6362|6363|6504|6505|6516|6550)")


def clean_card_number(card_number: str) -> str:
    return re.sub(r"\D", "", card_number or "")


def validate_credit_card_number(card_number: str) -> bool:
    """Luhn mod-10 check for 13 to 19 digit card numbers."""
    cleaned = clean_card_number(card_number)
    if len(cleaned) < 13 or len(cleaned) > 19:
        return False

    total = 0
    should_double = False
    for char in reversed(cleaned):
        digit = int(char)
        if should_double:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
        should_double = not should_double

    return total % 10 == 0


def get_card_brand(card_number: str) -> str:
    cleaned = clean_card_number(card_number)

    if cleaned.startswith("4"):
        return "visa"
    if re.match(r"^5[1-5]", cleaned) or re.match(r"^2[2-7]", cleaned):
        return "mastercard"
    if re.match(r"^3[47]", cleaned):
        return "amex"
    # Elo ranges starting with 4 are caught by the visa check above
    if _ELO_PREFIX.match(cleaned):
        return "elo"
    return "unknown"


def months_until_expiry(expiration_month, expiration_year, today: date) -> int:
    """Whole months from the current month to the expiry month (negative once expired)."""
    return (int(expiration_year) - today.year) * 12 + (int(expiration_month) - today.month)


def validate_card_expiration(expiration_month, expiration_year, today: date) -> bool:
    """A card is valid through the last day of its expiration month."""
    try:
        return months_until_expiry(expiration_month, expiration_year, today) >= 0
    except (TypeError, ValueError):
        return False


def is_card_expired(expiration_month, expiration_year, today: date) -> bool:
    return not validate_card_expiration(expiration_month, expiration_year, today)


def assert_valid_card(card_number: str, expiration_month, expiration_year, today: date) -> str:
    """Run the local card rules in order and return the detected brand."""
    if not validate_credit_card_number(card_number):
        raise ValidationError("Invalid card number", code="INVALID_CARD_NUMBER")
    if not validate_card_expiration(expiration_month, expiration_year, today):
        raise ValidationError("Card is expired", code="CARD_EXPIRED")

    brand = get_card_brand(card_number)
    if brand == "unknown":
        raise ValidationError("Card brand not supported", code="UNSUPPORTED_CARD_BRAND")
    return brand
