"""Domain types shared across the workflow engine."""

from domain.models import (  # noqa: F401
    DATA_COLLECTION_FIELDS,
    ActiveWorkflow,
    AuthenticationToken,
    DataCollection,
    ThreadMetadata,
)
from domain.vocabulary import (  # noqa: F401
    CoverageScope,
    RunStatus,
    SuspendReason,
    TerminationPath,
    TerminationReason,
    ValidationErrorType,
    WorkflowId,
)
