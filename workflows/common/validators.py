"""
MODULE: workflows/common/validators.py
PURPOSE: Deterministic field validators for collected user data.

Every validator is a pure function ``(value, *, today=None) -> ValidationResult``.
Validators never raise: malformed input yields ``valid=False`` with an error
code. A successful result carries the canonical value (ISO date, cleaned IBAN,
trimmed name) which replaces the raw input in the collected data.

EXPORTS:
    - ValidationResult
    - validate_date_of_birth / validate_future_date / validate_date
    - validate_iban / validate_zip_code / validate_email
    - validate_name / validate_address_line
    - FIELD_VALIDATORS: field name -> validator
    - to_validation_error(error, field) -> typed error dict
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional

from domain.vocabulary import ValidationErrorType
from workflows.common.datetime_parse import full_years_between, parse_date, to_iso_date
from workflows.io.config_store import get_validation_settings


@dataclass
class ValidationResult:
    """Outcome of a single field validation."""

    valid: bool
    value: Optional[str] = None
    error: Optional[str] = None  # e.g. "format", "too_young min_age 18"


Validator = Callable[..., ValidationResult]

_IBAN_DE = re.compile(r"^DE[0-9]{20}$")
_ZIP_DE = re.compile(r"^[0-9]{5}$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NAME_ALLOWED = re.compile(r"^[a-zA-ZäöüÄÖÜß\s'-]+$")
_NAME_LETTER = re.compile(r"[a-zA-ZäöüÄÖÜß]")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return str(value).strip() == ""


def _fail(error: str) -> ValidationResult:
    return ValidationResult(valid=False, error=error)


def validate_date(value: Optional[str], *, today: Optional[date] = None) -> ValidationResult:
    """Normalize any supported date notation to ``yyyy-MM-dd``."""

    if _is_blank(value):
        return _fail(ValidationErrorType.EMPTY.value)
    parsed = parse_date(str(value), today=today)
    if parsed is None:
        return _fail(ValidationErrorType.WRONG_FORMAT.value)
    return ValidationResult(valid=True, value=to_iso_date(parsed))


def validate_date_of_birth(
    value: Optional[str],
    *,
    today: Optional[date] = None,
    age_min: Optional[int] = None,
    age_max: Optional[int] = None,
) -> ValidationResult:
    """Birth date must be in the past and within the configured age window."""

    base = validate_date(value, today=today)
    if not base.valid:
        return base
    limits = get_validation_settings()
    age_min = limits.age_min if age_min is None else age_min
    age_max = limits.age_max if age_max is None else age_max
    today = today or date.today()
    born = parse_date(base.value)
    if born > today:
        return _fail(ValidationErrorType.FUTURE_DATE.value)
    age = full_years_between(born, today)
    if age < age_min:
        return _fail(f"{ValidationErrorType.TOO_YOUNG.value} min_age {age_min}")
    if age > age_max:
        return _fail(f"{ValidationErrorType.TOO_OLD.value} max_age {age_max}")
    return base


def validate_future_date(value: Optional[str], *, today: Optional[date] = None) -> ValidationResult:
    """Dates such as termination dates may be today or later, never in the past."""

    base = validate_date(value, today=today)
    if not base.valid:
        return base
    today = today or date.today()
    if parse_date(base.value) < today:
        return _fail(ValidationErrorType.PAST_DATE.value)
    return base


def _iban_remainder(iban: str) -> int:
    rearranged = iban[4:] + iban[:4]
    digits = "".join(str(int(ch, 36)) if ch.isalpha() else ch for ch in rearranged)
    remainder = 0
    # Chunked to keep intermediate numbers small.
    for start in range(0, len(digits), 9):
        remainder = int(f"{remainder}{digits[start:start + 9]}") % 97
    return remainder


def validate_iban(value: Optional[str], *, today: Optional[date] = None) -> ValidationResult:
    """German IBAN: ``DE`` + 20 digits with a valid ISO 7064 mod-97 checksum."""

    if _is_blank(value):
        return _fail(ValidationErrorType.EMPTY.value)
    cleaned = re.sub(r"\s+", "", str(value)).upper()
    if not _IBAN_DE.match(cleaned):
        return _fail(ValidationErrorType.FORMAT.value)
    if _iban_remainder(cleaned) != 1:
        return _fail(ValidationErrorType.CHECKSUM.value)
    return ValidationResult(valid=True, value=cleaned)


def validate_zip_code(value: Optional[str], *, today: Optional[date] = None) -> ValidationResult:
    if _is_blank(value):
        return _fail(ValidationErrorType.EMPTY.value)
    cleaned = re.sub(r"\s+", "", str(value))
    if not _ZIP_DE.match(cleaned):
        return _fail(ValidationErrorType.FORMAT.value)
    if len(set(cleaned)) == 1:
        return _fail(ValidationErrorType.INVALID.value)
    return ValidationResult(valid=True, value=cleaned)


def validate_email(value: Optional[str], *, today: Optional[date] = None) -> ValidationResult:
    if _is_blank(value):
        return _fail(ValidationErrorType.EMPTY.value)
    cleaned = str(value).strip()
    if not _EMAIL.match(cleaned):
        return _fail(ValidationErrorType.INVALID.value)
    return ValidationResult(valid=True, value=cleaned)


def validate_name(value: Optional[str], *, today: Optional[date] = None) -> ValidationResult:
    if _is_blank(value):
        return _fail(ValidationErrorType.EMPTY.value)
    cleaned = str(value).strip()
    if not _NAME_ALLOWED.match(cleaned):
        return _fail(ValidationErrorType.INVALID_CHARACTERS.value)
    if not _NAME_LETTER.search(cleaned):
        return _fail(ValidationErrorType.NO_LETTERS.value)
    return ValidationResult(valid=True, value=cleaned)


def validate_address_line(value: Optional[str], *, today: Optional[date] = None) -> ValidationResult:
    if _is_blank(value):
        return _fail(ValidationErrorType.EMPTY.value)
    return ValidationResult(valid=True, value=str(value).strip())


# Field name -> validator. Fields without an entry are accepted as extracted.
FIELD_VALIDATORS: Dict[str, Validator] = {
    "dateOfBirth": validate_date_of_birth,
    "policyTerminationDate": validate_future_date,
    "firstName": validate_name,
    "lastName": validate_name,
    "email": validate_email,
    "street": validate_address_line,
    "houseNumber": validate_address_line,
    "zipCode": validate_zip_code,
    "city": validate_address_line,
    "iban": validate_iban,
}

_KNOWN_ERROR_TYPES = {item.value for item in ValidationErrorType}
_PARAM_ALIASES = {"min_age": "minAge", "max_age": "maxAge"}


def to_validation_error(error: str, field: str) -> Dict[str, Any]:
    """Turn a raw validator error (``"too_young min_age 18"``) into a typed error.

    Trailing ``key value`` pairs become params; unknown error codes map to
    ``default``.
    """

    tokens = (error or "").split()
    error_type = tokens[0] if tokens else ValidationErrorType.DEFAULT.value
    if error_type not in _KNOWN_ERROR_TYPES:
        error_type = ValidationErrorType.DEFAULT.value
    params: Dict[str, Any] = {}
    rest = tokens[1:]
    for key, raw in zip(rest[0::2], rest[1::2]):
        param_key = _PARAM_ALIASES.get(key, key)
        params[param_key] = raw
    return {"type": error_type, "field": field, "params": params}
