"""
CPF helpers
Normalization and check-digit validation for Brazilian taxpayer ids
"""
import re
from typing import Optional

_NON_DIGIT_RE = re.compile(r"\D")


def normalize_cpf(value: Optional[str]) -> str:
    """Digits only; empty string for missing values."""
    if not value:
        return ""
    return _NON_DIGIT_RE.sub("", str(value))


def _check_digit(digits: str, weight_start: int) -> int:
    total = sum(int(d) * w for d, w in zip(digits, range(weight_start, 1, -1)))
    remainder = (total * 10) % 11
    return 0 if remainder == 10 else remainder


def validate_cpf(value: Optional[str]) -> bool:
    """
    Validate a CPF by its two mod-11 check digits.

    Sequences of one repeated digit (000.000.000-00, 111...) pass the
    arithmetic but are not issued, so they are rejected.
    """
    cpf = normalize_cpf(value)
    if len(cpf) != 11 or cpf == cpf[0] * 11:
        return False

    first = _check_digit(cpf[:9], 10)
    second = _check_digit(cpf[:10], 11)
    return cpf[9] == str(first) and cpf[10] == str(second)


def mask_cpf(value: Optional[str]) -> str:
    """123...01 style, safe for logs."""
    cpf = normalize_cpf(value)
    if len(cpf) < 5:
        return "***"
    return f"{cpf[:3]}...{cpf[-2:]}"
