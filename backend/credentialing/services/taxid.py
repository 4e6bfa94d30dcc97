"""
CNPJ (Brazilian company tax ID) helpers.

Canonical storage is 14 ASCII digits; display format is 99.999.999/9999-99.
"""
import re

_NON_DIGITS = re.compile(r"\D")
_DISPLAY = re.compile(r"^(\d{2})(\d{3})(\d{3})(\d{4})(\d{2})$")

_WEIGHTS_FIRST = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
_WEIGHTS_SECOND = [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]


class InvalidTaxIdError(ValueError):
    """Tax ID does not have 14 digits after normalization."""


def normalize_tax_id(tax_id: str) -> str:
    """Strip every non-digit character."""
    return _NON_DIGITS.sub("", tax_id or "")


def is_well_formed(tax_id: str) -> bool:
    """14 digits after normalization. Check digits are not verified."""
    return len(normalize_tax_id(tax_id)) == 14


def require_tax_id(tax_id: str) -> str:
    """Normalize, raising InvalidTaxIdError if the result is not 14 digits."""
    clean = normalize_tax_id(tax_id)
    if len(clean) != 14:
        raise InvalidTaxIdError("CNPJ must contain 14 numeric digits")
    return clean


def format_tax_id(tax_id: str) -> str:
    """99.999.999/9999-99. Input that is not 14 digits is returned normalized."""
    clean = normalize_tax_id(tax_id)
    return _DISPLAY.sub(r"\1.\2.\3/\4-\5", clean)


def _check_digit(digits: str, weights: list) -> int:
    remainder = sum(int(d) * w for d, w in zip(digits, weights)) % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cnpj(tax_id: str) -> bool:
    """Modulo-11 check digit validation."""
    digits = normalize_tax_id(tax_id)
    if len(digits) != 14:
        return False

    # All-same-digit sequences pass the checksum but are not issued
    if digits == digits[0] * 14:
        return False

    if int(digits[12]) != _check_digit(digits[:12], _WEIGHTS_FIRST):
        return False
    return int(digits[13]) == _check_digit(digits[:13], _WEIGHTS_SECOND)


def mask_tax_id(tax_id: str) -> str:
    """Log-safe form: 12345.***/****-**"""
    clean = normalize_tax_id(tax_id)
    if len(clean) != 14:
        return tax_id
    return f"{clean[:5]}.***/****-**"


def mask_email(email: str) -> str:
    user, _, domain = (email or "").partition("@")
    if not domain:
        return "***"
    masked_user = f"{user[:2]}***{user[-1]}" if len(user) > 3 else "***"
    return f"{masked_user}@{domain}"


def mask_phone(phone: str) -> str:
    clean = _NON_DIGITS.sub("", phone or "")
    if len(clean) < 8:
        return phone
    return f"+{clean[:4]}****{clean[-4:]}"
