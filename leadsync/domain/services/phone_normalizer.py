"""
Phone Normalizer
Canonical phone key shared by WhatsApp ids, form submissions and leads

Target shape: +55 (country) + DDD (2 digits) + 9 (mobile prefix) + 8 digits.
Every component that joins on phone numbers must go through normalize_phone;
two callers normalizing the same raw value always get the same key.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

COUNTRY_CODE = "55"
MOBILE_PREFIX = "9"
CANONICAL_LENGTH = 13

_SUFFIX_RE = re.compile(r"@.*$")
_NON_DIGIT_RE = re.compile(r"\D")
_LEADING_ZEROS_RE = re.compile(r"^0+")


class PhoneFlag:
    """Observability flag attached to a resolution"""
    OK = "ok"
    EMPTY = "empty"
    AMBIGUOUS = "ambiguous"    # 8/9 digits, DDD unknown
    UNEXPECTED = "unexpected"  # length matches no rule


@dataclass(frozen=True)
class PhoneResolution:
    """Result of resolving a raw phone string."""
    canonical: str
    digits: str
    flag: str

    @property
    def is_canonical(self) -> bool:
        return self.flag == PhoneFlag.OK


def resolve_phone(raw: Optional[str]) -> PhoneResolution:
    """
    Resolve a raw phone string into its canonical key.

    Never raises. Values that cannot be completed are returned best-effort
    with a flag instead of being dropped.
    """
    if not raw:
        return PhoneResolution(canonical="", digits="", flag=PhoneFlag.EMPTY)

    # Transport suffix goes first: "@s.whatsapp.net" ids may carry digits after the @
    numero = _SUFFIX_RE.sub("", str(raw))
    numero = _NON_DIGIT_RE.sub("", numero)
    numero = _LEADING_ZEROS_RE.sub("", numero)

    length = len(numero)
    flag = PhoneFlag.OK

    if length in (8, 9):
        logger.warning(f"[PHONE] {length} digits, unknown DDD: {numero} (original: {raw})")
        flag = PhoneFlag.AMBIGUOUS
    elif length == 10:
        # DDD + 8 digits: add country code and mobile prefix
        numero = COUNTRY_CODE + numero[:2] + MOBILE_PREFIX + numero[2:]
    elif length == 11:
        numero = COUNTRY_CODE + numero
    elif length == 12 and numero.startswith(COUNTRY_CODE):
        numero = COUNTRY_CODE + numero[2:4] + MOBILE_PREFIX + numero[4:]
    elif length == CANONICAL_LENGTH and numero.startswith(COUNTRY_CODE):
        pass
    else:
        logger.warning(f"[PHONE] Unexpected length: {length} digits (original: {raw})")
        flag = PhoneFlag.UNEXPECTED

    return PhoneResolution(canonical="+" + numero, digits=numero, flag=flag)


def normalize_phone(raw: Optional[str]) -> str:
    """
    Normalize a phone to the canonical +5531999999999 form.

    Examples:
        normalize_phone("31999972368")                  -> "+5531999972368"
        normalize_phone("553192267220@s.whatsapp.net")  -> "+5531992267220"
        normalize_phone("+55 31 99997-2368")            -> "+5531999972368"
        normalize_phone("3192267220")                   -> "+5531992267220"
    """
    return resolve_phone(raw).canonical


def extract_phone_from_whatsapp_id(whatsapp_id: str) -> str:
    """Canonical phone of a WhatsApp id such as 5531999999999@s.whatsapp.net"""
    return normalize_phone(_SUFFIX_RE.sub("", whatsapp_id or ""))


def phones_match(phone1: Optional[str], phone2: Optional[str]) -> bool:
    """Whether two raw phones share a canonical key"""
    return normalize_phone(phone1) == normalize_phone(phone2)


def is_valid_brazilian_phone(phone: Optional[str]) -> bool:
    """Canonical, valid DDD (11-99) and carrying the mobile prefix"""
    digits = normalize_phone(phone).lstrip("+")

    if len(digits) != CANONICAL_LENGTH or not digits.startswith(COUNTRY_CODE):
        return False

    ddd = int(digits[2:4])
    if ddd < 11 or ddd > 99:
        return False

    return digits[4] == MOBILE_PREFIX


def format_phone_for_display(phone: Optional[str]) -> str:
    """+55 31 99997-2368 for canonical numbers, the normalized value otherwise"""
    normalized = normalize_phone(phone)
    digits = normalized.lstrip("+")

    if len(digits) == CANONICAL_LENGTH:
        return f"+{digits[:2]} {digits[2:4]} {digits[4:9]}-{digits[9:]}"

    return normalized
