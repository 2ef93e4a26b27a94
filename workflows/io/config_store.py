"""
[Config Store] Environment-backed settings for validation, services and storage.

All accessors return sensible defaults when a variable is unset so tests and
local runs work without any configuration. Settings are read once and cached;
tests call ``reset_settings()`` after patching the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

__workflow_role__ = "ConfigStore"

DEFAULT_LOCALE = "de-DE"
SUPPORTED_LOCALES: Tuple[str, ...] = ("de-DE", "en-GB")

# Default JSON database location (sibling of the package root)
DB_PATH = Path(__file__).resolve().parents[2] / "workflow_database.json"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ValidationSettings:
    """Limits used by the deterministic validators."""

    age_min: int = 18
    age_max: int = 99
    max_claim_count: int = 2
    country: str = "DE"


@dataclass(frozen=True)
class ServiceSettings:
    """Base URLs and credentials for the external insurance services."""

    base_url: str = "http://localhost:4000"
    customer_base_url: str = "http://localhost:4001"
    auth_username: str = ""
    auth_password: str = ""
    auth_client: str = ""
    partner_id: str = ""
    product_name: str = "privateLiability"
    timeout: float = 10.0


@dataclass(frozen=True)
class Settings:
    validations: ValidationSettings = field(default_factory=ValidationSettings)
    services: ServiceSettings = field(default_factory=ServiceSettings)
    db_path: Path = DB_PATH
    default_locale: str = DEFAULT_LOCALE
    max_loop_iterations: int = 100
    allowed_origins: Tuple[str, ...] = ()


_SETTINGS: Optional[Settings] = None


def load_settings() -> Settings:
    """[Config Store] Build settings from environment variables."""

    validations = ValidationSettings(
        age_min=_int_env("AGE_MIN", 18),
        age_max=_int_env("AGE_MAX", 99),
        max_claim_count=_int_env("MAX_CLAIM_COUNT", 2),
        country=os.getenv("VALIDATION_COUNTRY", "DE"),
    )
    services = ServiceSettings(
        base_url=os.getenv("INSURANCE_API_URL", "http://localhost:4000").rstrip("/"),
        customer_base_url=os.getenv("INSURANCE_CUSTOMER_API_URL", "http://localhost:4001").rstrip("/"),
        auth_username=os.getenv("REQ_AUTH_USERNAME", ""),
        auth_password=os.getenv("REQ_AUTH_PASSWORD", ""),
        auth_client=os.getenv("REQ_AUTH_CLIENT", ""),
        partner_id=os.getenv("PARTNER_ID", ""),
        product_name=os.getenv("PRODUCT_NAME", "privateLiability"),
        timeout=float(os.getenv("SERVICE_TIMEOUT", "10")),
    )
    db_path = os.getenv("WORKFLOW_DB_PATH")
    locale = os.getenv("DEFAULT_LOCALE", DEFAULT_LOCALE)
    if locale not in SUPPORTED_LOCALES:
        locale = DEFAULT_LOCALE
    # "*" cannot be combined with credentialed CORS
    origins = tuple(
        origin.strip() for origin in os.getenv("ALLOWED_ORIGINS", "").split(",") if origin.strip() not in ("", "*")
    )
    return Settings(
        validations=validations,
        services=services,
        db_path=Path(db_path) if db_path else DB_PATH,
        default_locale=locale,
        max_loop_iterations=_int_env("MAX_LOOP_ITERATIONS", 100),
        allowed_origins=origins,
    )


def get_settings() -> Settings:
    """[Config Store] Return cached settings, loading them on first use."""

    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def reset_settings() -> None:
    """Drop cached settings (used by tests)."""

    global _SETTINGS
    _SETTINGS = None


def get_validation_settings() -> ValidationSettings:
    return get_settings().validations


def get_service_settings() -> ServiceSettings:
    return get_settings().services


def normalize_locale(locale: Optional[str]) -> str:
    """Map any locale hint onto a supported locale; unset means the configured default."""

    if not locale:
        return get_settings().default_locale
    if locale in SUPPORTED_LOCALES:
        return locale
    lowered = locale.lower()
    if lowered.startswith("en"):
        return "en-GB"
    if lowered.startswith("de"):
        return "de-DE"
    return get_settings().default_locale
