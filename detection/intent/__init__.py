"""Intent derivation on top of the configured intent adapter."""

from detection.intent.classifier import (  # noqa: F401
    CANCEL_CONTINUE_OPTIONS,
    QUOTE_OPTIONS,
    IntentResult,
    derive_intent,
    is_forward,
    wants_to_cancel,
)
