"""Pydantic models for the data collected across workflow turns."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.vocabulary import CoverageScope, TerminationReason


class DataCollection(BaseModel):
    """Flat record of everything a workflow may collect from the user.

    Field order matters: validation reports the first failing field in this
    order, and the extraction prompt lists fields in this order.
    """

    model_config = ConfigDict(use_enum_values=True)

    dateOfBirth: Optional[str] = Field(None, description="Date of birth of the policy holder (yyyy-MM-dd)")
    coverageScope: Optional[CoverageScope] = Field(
        None, description="Who is covered: single, withPartner, withChildren or withFamily"
    )
    hasInsurance: Optional[bool] = Field(None, description="Whether the user currently has liability insurance")
    hasClaims: Optional[bool] = Field(None, description="Whether the user had claims in the last five years")
    claimCount: Optional[int] = Field(None, description="Number of claims in the last five years")
    firstName: Optional[str] = Field(None, description="First name")
    lastName: Optional[str] = Field(None, description="Last name")
    email: Optional[str] = Field(None, description="Email address")
    street: Optional[str] = Field(None, description="Street name without house number")
    houseNumber: Optional[str] = Field(None, description="House number")
    zipCode: Optional[str] = Field(None, description="German postal code (5 digits)")
    city: Optional[str] = Field(None, description="City")
    startDate: Optional[str] = Field(None, description="Requested policy start date (yyyy-MM-dd)")
    iban: Optional[str] = Field(None, description="German IBAN for the direct debit")
    policyId: Optional[str] = Field(None, description="Policy number of an existing contract")
    policyTerminationReason: Optional[TerminationReason] = Field(
        None, description="Reason for terminating the policy"
    )
    policyTerminationDate: Optional[str] = Field(None, description="Requested termination date (yyyy-MM-dd)")


DATA_COLLECTION_FIELDS: List[str] = list(DataCollection.model_fields.keys())


def schema_description(schema: type[BaseModel] = DataCollection) -> str:
    """Render ``field: description`` lines used in extraction prompts."""

    lines = []
    for name, info in schema.model_fields.items():
        lines.append(f"- {name}: {info.description or ''}".rstrip())
    return "\n".join(lines)


class AuthenticationToken(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    # Absolute expiry as epoch milliseconds.
    expires_in: int = 0


class ActiveWorkflow(BaseModel):
    id: str
    runId: str
    currentStepId: List[str] = Field(default_factory=list)


class ThreadMetadata(BaseModel):
    """Metadata blob persisted per conversation thread."""

    dataCollection: Optional[Dict[str, Any]] = None
    activeWorkflow: Optional[ActiveWorkflow] = None
    authentication: Optional[AuthenticationToken] = None
    workingMemory: Optional[str] = None
