"""
MODULE: services/insurance_api.py
PURPOSE: Async clients for the external insurance REST services.

Customer-facing endpoints (quote, policy draft, payment, documents) live on
the customer base URL; token, policy lookup, cancellation and withdrawal live
on the core base URL and need a bearer token. Every non-2xx response raises
ServiceError after logging the response body; a policy lookup answering 404
returns None.

EXPORTS:
    - InsuranceServices (fetch_quote, create_policy_draft, pay_policy,
      fetch_dynamic_document, fetch_token, fetch_policy, cancel_policy,
      withdraw_policy)
    - ServiceError
    - Quote / PolicyDraft / Policy / PaymentResult / DynamicDocument response models
    - get_insurance_services() / reset_insurance_services()
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from domain.models import AuthenticationToken
from workflows.io.config_store import ServiceSettings, get_service_settings

logger = logging.getLogger(__name__)

DEFAULT_PACKAGE = "M"
DEFAULT_PAYMENT_SCHEDULE = "monthly"
DOCUMENT_TYPE = "Beratungsprotokoll"


class ServiceError(Exception):
    """A business service answered with a non-2xx status or an unsuccessful body."""

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class QuoteData(BaseModel):
    model_config = ConfigDict(extra="allow")

    gross: float
    premium: Optional[float] = None
    taxes: Optional[float] = None
    quoteId: Optional[str] = None
    requestData: Optional[Dict[str, Any]] = None


class Quote(BaseModel):
    success: bool
    message: str = ""
    data: Optional[QuoteData] = None


class DraftInvoice(BaseModel):
    invoiceId: str
    paymentOrderId: str


class PolicyDraft(BaseModel):
    model_config = ConfigDict(extra="allow")

    policyId: str
    prettyId: str
    draftInvoice: DraftInvoice
    quote: Optional[Dict[str, Any]] = None


class PaymentResult(BaseModel):
    success: bool
    message: str = ""
    data: Optional[Dict[str, Any]] = None


class DynamicDocument(BaseModel):
    success: bool
    message: str = ""
    data: Optional[Dict[str, Any]] = None


class PolicyCustomerValues(BaseModel):
    model_config = ConfigDict(extra="allow")

    dateOfBirth: str
    addressStreet: str = ""
    addressHouseNumber: str = ""
    addressPlz: str = ""
    addressCity: str = ""
    addressCo: Optional[str] = None


class PolicyCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")

    firstName: str
    lastName: str
    email: str = ""
    phone: Optional[str] = None
    values: PolicyCustomerValues


class PolicyObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    values: Dict[str, Any] = Field(default_factory=dict)


class PolicyPackage(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""


class Policy(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    prettyId: str
    status: Optional[str] = None
    customer: PolicyCustomer
    values: Dict[str, Any] = Field(default_factory=dict)
    objects: List[PolicyObject] = Field(default_factory=list)
    package: Optional[PolicyPackage] = None
    startsAt: str
    cancelledAt: Optional[str] = None
    cancellationRequestedAt: Optional[str] = None
    withdrawnAt: Optional[str] = None
    withdrawalRequestedAt: Optional[str] = None
    effectiveAt: Optional[str] = None
    effectiveRequestedAt: Optional[str] = None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def _now_ms() -> int:
    return int(time.time() * 1000)


class InsuranceServices:
    """Thin async wrapper over the insurance REST API.

    ``transport`` is handed to ``httpx.AsyncClient`` so tests can plug in an
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_service_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.timeout, transport=self._transport)

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                logger.error("[SERVICE] %s request error: %s", operation, exc)
                raise ServiceError(operation, str(exc)) from exc
        return response

    @staticmethod
    def _raise_for_status(operation: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        logger.error(
            "[SERVICE] %s failed: %s %s body=%s",
            operation,
            response.status_code,
            response.reason_phrase,
            response.text,
        )
        raise ServiceError(operation, response.text or response.reason_phrase, response.status_code)

    def _customer_url(self, path: str) -> str:
        return f"{self.settings.customer_base_url}{path}"

    def _core_url(self, path: str) -> str:
        return f"{self.settings.base_url}{path}"

    @staticmethod
    def _bearer(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    # -- customer endpoints -----------------------------------------------

    async def fetch_quote(
        self,
        *,
        zip_code: str,
        date_of_birth: str,
        coverage_scope: str,
        payment_schedule: str = DEFAULT_PAYMENT_SCHEDULE,
    ) -> Quote:
        payload = {
            "productName": self.settings.product_name,
            "package": DEFAULT_PACKAGE,
            "addons": [],
            "partnerId": self.settings.partner_id,
            "values": {
                "policyHolderPlz": zip_code,
                "policyHolderDateOfBirth": date_of_birth,
                "coverageScope": coverage_scope,
                "paymentSchedule": payment_schedule,
            },
        }
        response = await self._request("fetch_quote", "POST", self._customer_url("/v1/quote"), json=payload)
        self._raise_for_status("fetch_quote", response)
        quote = Quote.model_validate(response.json())
        if not quote.success:
            raise ServiceError("fetch_quote", quote.message)
        return quote

    async def create_policy_draft(
        self,
        data: Dict[str, Any],
        *,
        payment_schedule: str = DEFAULT_PAYMENT_SCHEDULE,
    ) -> PolicyDraft:
        previous_claims = bool(data.get("hasClaims"))
        payload = {
            "productName": self.settings.product_name,
            "package": DEFAULT_PACKAGE,
            "addons": [],
            "partnerId": self.settings.partner_id,
            "values": {
                "policyStartDate": data.get("startDate"),
                "previousInsurer": "",
                "previousInsuranceNumber": "",
                "policyHolderDateOfBirth": data.get("dateOfBirth"),
                "previousClaims": previous_claims,
                "previousClaimsQuantity": (data.get("claimCount") or 0) if previous_claims else 0,
                "paymentSchedule": payment_schedule,
                "switchService": "full",
                "policyHolderPlz": data.get("zipCode"),
                "coverageScope": data.get("coverageScope"),
            },
            "customer": {
                "email": data.get("email"),
                "firstName": data.get("firstName"),
                "lastName": data.get("lastName"),
                "phone": "",
                "values": {
                    "dateOfBirth": data.get("dateOfBirth"),
                    "addressStreet": data.get("street"),
                    "addressHouseNumber": data.get("houseNumber"),
                    "addressPlz": data.get("zipCode"),
                    "addressCity": data.get("city"),
                },
            },
        }
        response = await self._request(
            "create_policy_draft", "POST", self._customer_url("/v1/policies/new"), json=payload
        )
        self._raise_for_status("create_policy_draft", response)
        return PolicyDraft.model_validate(response.json())

    async def pay_policy(self, draft: PolicyDraft, data: Dict[str, Any]) -> PaymentResult:
        payload = {
            "prettyId": draft.prettyId,
            "partnerId": self.settings.partner_id,
            "payment": {
                "invoiceId": draft.draftInvoice.invoiceId,
                "paymentOrderId": draft.draftInvoice.paymentOrderId,
                "type": "oneTime",
                "processingType": "sepa",
                "firstName": data.get("firstName"),
                "lastName": data.get("lastName"),
                "iban": data.get("iban"),
            },
            "customer": {
                "firstName": data.get("firstName"),
                "lastName": data.get("lastName"),
                "dob": data.get("dateOfBirth"),
                "email": data.get("email"),
            },
        }
        url = self._customer_url(f"/v1/policies/{draft.policyId}/pay")
        response = await self._request("pay_policy", "POST", url, json=payload)
        self._raise_for_status("pay_policy", response)
        result = PaymentResult.model_validate(response.json())
        if not result.success:
            raise ServiceError("pay_policy", result.message)
        return result

    async def fetch_dynamic_document(self, policy_id: str) -> DynamicDocument:
        url = self._customer_url(f"/v1/documents/{policy_id}/document/dynamic")
        payload = {"partnerId": self.settings.partner_id, "documentType": DOCUMENT_TYPE}
        response = await self._request("fetch_dynamic_document", "POST", url, json=payload)
        self._raise_for_status("fetch_dynamic_document", response)
        document = DynamicDocument.model_validate(response.json())
        if not document.success:
            raise ServiceError("fetch_dynamic_document", document.message)
        return document

    # -- core endpoints -----------------------------------------------------

    async def fetch_token(self) -> AuthenticationToken:
        """Password grant; ``expires_in`` is turned into an absolute epoch-ms deadline."""

        form = {
            "grant_type": "password",
            "client_secret": "",
            "client_id": self.settings.auth_client,
            "username": self.settings.auth_username,
            "password": self.settings.auth_password,
        }
        response = await self._request(
            "fetch_token", "POST", self._core_url("/v1/authentication/token"), data=form
        )
        self._raise_for_status("fetch_token", response)
        body = response.json()
        lifetime_seconds = int(body.get("expires_in") or 0)
        return AuthenticationToken(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            token_type=body.get("token_type") or "Bearer",
            expires_in=_now_ms() + lifetime_seconds * 1000,
        )

    async def fetch_policy(self, policy_id: str, token: str) -> Optional[Policy]:
        response = await self._request(
            "fetch_policy", "GET", self._core_url(f"/v1/policies/{policy_id}"), headers=self._bearer(token)
        )
        if response.status_code == 404:
            logger.info("[SERVICE] policy %s not found", policy_id)
            return None
        self._raise_for_status("fetch_policy", response)
        return Policy.model_validate(response.json())

    async def cancel_policy(self, policy_id: str, token: str, *, reason: str, cancel_at: str) -> Dict[str, Any]:
        payload = {
            "reason": reason,
            "cancelAt": cancel_at,
            "refund": {"type": "full"},
            "cancellationRequestedAt": date.today().isoformat(),
        }
        response = await self._request(
            "cancel_policy",
            "POST",
            self._core_url(f"/v1/policies/{policy_id}/cancel"),
            json=payload,
            headers=self._bearer(token),
        )
        self._raise_for_status("cancel_policy", response)
        return response.json()

    async def withdraw_policy(
        self, policy_id: str, token: str, *, reason: str, withdraw_at: Optional[str] = None
    ) -> Dict[str, Any]:
        today = date.today().isoformat()
        payload = {
            "reason": reason,
            "withdrawAt": withdraw_at or today,
            "withdrawalRequestedAt": today,
        }
        response = await self._request(
            "withdraw_policy",
            "POST",
            self._core_url(f"/v1/policies/{policy_id}/withdraw"),
            json=payload,
            headers=self._bearer(token),
        )
        self._raise_for_status("withdraw_policy", response)
        return response.json()


_SERVICES: Optional[InsuranceServices] = None


def get_insurance_services() -> InsuranceServices:
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = InsuranceServices()
    return _SERVICES


def reset_insurance_services() -> None:
    global _SERVICES
    _SERVICES = None
