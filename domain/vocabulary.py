"""
MODULE: domain/vocabulary.py
PURPOSE: Closed vocabularies shared by workflows, detection and the API.

Contains:
- WorkflowId: top-level workflows reachable through the message router
- CoverageScope / TerminationReason: enumerated DataCollection values
- TerminationPath: outcome of the termination path decision
- RunStatus: lifecycle of a workflow run
- SuspendReason: why a step handed control back to the user
"""

from __future__ import annotations

from enum import Enum


class WorkflowId(str, Enum):
    """Workflows the message router can start or resume."""

    SALES = "sales-workflow"
    POLICY_MANAGEMENT = "policy-management-workflow"
    POLICY_MANAGEMENT_INQUIRY = "policy-management-inquiry-workflow"
    POLICY_MANAGEMENT_TERMINATE = "policy-management-terminate-workflow"


class CoverageScope(str, Enum):
    SINGLE = "single"
    WITH_PARTNER = "withPartner"
    WITH_CHILDREN = "withChildren"
    WITH_FAMILY = "withFamily"


class TerminationReason(str, Enum):
    EXTRAORDINARY = "extraordinaryTerminationForAnImportantReason"
    FALSE_DECLARATIONS = "falseDeclarations"
    ORDINARY = "ordinaryCancellation"
    WITHDRAWAL = "withdrawal"


class TerminationPath(str, Enum):
    CANCELLATION = "cancellation"
    WITHDRAWAL = "withdrawal"
    NOT_NEEDED = "not_needed"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


class SuspendReason(str, Enum):
    USER_INPUT = "user_input"
    ABORT = "abort"


class ValidationErrorType(str, Enum):
    """Typed validation failures surfaced to the conversational layer."""

    EMPTY = "empty"
    FORMAT = "format"
    INVALID = "invalid"
    CHECKSUM = "checksum"
    WRONG_FORMAT = "wrong_format"
    FUTURE_DATE = "future_date"
    PAST_DATE = "past_date"
    INVALID_CHARACTERS = "invalid_characters"
    NO_LETTERS = "no_letters"
    TOO_YOUNG = "too_young"
    TOO_OLD = "too_old"
    DEFAULT = "default"
