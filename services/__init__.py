"""External business services used by workflow steps."""

from services.insurance_api import (  # noqa: F401
    InsuranceServices,
    ServiceError,
    get_insurance_services,
    reset_insurance_services,
)
