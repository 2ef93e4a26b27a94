"""Pytest configuration for workflow backend tests."""

import os
import sys
import time
from pathlib import Path

import pytest

# Ensure project root is on PYTHONPATH
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# Deterministic heuristic adapters unless a test injects its own
os.environ.setdefault("AGENT_MODE", "stub")

from adapters.agent_adapter import AgentAdapter, ExtractionSuccess, reset_agent_adapter  # noqa: E402
from domain.models import AuthenticationToken  # noqa: E402
from llm.provider_config import clear_provider_cache  # noqa: E402
from services.insurance_api import (  # noqa: E402
    DynamicDocument,
    PaymentResult,
    Policy,
    PolicyDraft,
    Quote,
    reset_insurance_services,
)
from workflows.io.config_store import reset_settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point the JSON database at a temp file and drop every cached singleton."""
    monkeypatch.setenv("AGENT_MODE", "stub")
    monkeypatch.setenv("WORKFLOW_DB_PATH", str(tmp_path / "workflow_database.json"))
    monkeypatch.delenv("EXTRACTION_PROVIDER", raising=False)
    monkeypatch.delenv("INTENT_PROVIDER", raising=False)
    reset_settings()
    clear_provider_cache()
    reset_agent_adapter()
    reset_insurance_services()
    yield
    reset_settings()
    clear_provider_cache()
    reset_agent_adapter()
    reset_insurance_services()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedAgent(AgentAdapter):
    """Agent that answers from queued results and records every call.

    Empty queues mean "nothing extracted" and "continue" respectively.
    """

    def __init__(self):
        self.extractions = []
        self.intents = []
        self.extract_calls = []
        self.classify_calls = []

    async def extract(self, user_message, question, schema=None):
        self.extract_calls.append((user_message, question))
        if self.extractions:
            result = self.extractions.pop(0)
            if isinstance(result, Exception):
                raise result
            if isinstance(result, dict):
                return ExtractionSuccess(data=result)
            return result
        return ExtractionSuccess(data={})

    async def classify(self, question, user_message, options):
        self.classify_calls.append((question, user_message))
        if self.intents:
            return self.intents.pop(0)
        return {"intent": "continue", "confidence": 0.9}


def make_policy(**overrides):
    policy = {
        "id": "pol-1",
        "prettyId": "HP-123456",
        "status": "active",
        "customer": {
            "firstName": "Erika",
            "lastName": "Mustermann",
            "email": "erika@example.com",
            "values": {
                "dateOfBirth": "1985-04-12",
                "addressStreet": "Hauptstraße",
                "addressHouseNumber": "5",
                "addressPlz": "10115",
                "addressCity": "Berlin",
            },
        },
        "values": {"iban": "DE89370400440532013000"},
        "objects": [{"name": "privateLiability", "values": {"coverageScope": "single"}}],
        "startsAt": "2024-01-01",
    }
    policy.update(overrides)
    return policy


class FakeInsuranceServices:
    """In-process stand-in for InsuranceServices."""

    def __init__(self, policy=None, document=None):
        self.policy = make_policy() if policy is None else policy
        self.document = document
        self.calls = []

    async def fetch_quote(self, *, zip_code, date_of_birth, coverage_scope, payment_schedule="monthly"):
        self.calls.append(("fetch_quote", zip_code, date_of_birth, coverage_scope))
        return Quote.model_validate(
            {
                "success": True,
                "data": {
                    "gross": 5.49,
                    "requestData": {"values": {"paymentSchedule": payment_schedule}},
                },
            }
        )

    async def create_policy_draft(self, data, *, payment_schedule="monthly"):
        self.calls.append(("create_policy_draft", dict(data), payment_schedule))
        return PolicyDraft.model_validate(
            {
                "policyId": "draft-1",
                "prettyId": "HP-000001",
                "draftInvoice": {"invoiceId": "inv-1", "paymentOrderId": "po-1"},
            }
        )

    async def pay_policy(self, draft, data):
        self.calls.append(("pay_policy", draft.policyId, data.get("iban")))
        return PaymentResult(success=True)

    async def fetch_dynamic_document(self, policy_id):
        self.calls.append(("fetch_dynamic_document", policy_id))
        if isinstance(self.document, Exception):
            raise self.document
        return self.document or DynamicDocument(success=True, data={})

    async def fetch_token(self):
        self.calls.append(("fetch_token",))
        return AuthenticationToken(access_token="token-1", expires_in=int(time.time() * 1000) + 3_600_000)

    async def fetch_policy(self, policy_id, token):
        self.calls.append(("fetch_policy", policy_id, token))
        if self.policy is None or policy_id != self.policy["prettyId"]:
            return None
        return Policy.model_validate(self.policy)

    async def cancel_policy(self, policy_id, token, *, reason, cancel_at):
        self.calls.append(("cancel_policy", policy_id, token, reason, cancel_at))
        return {"success": True}

    async def withdraw_policy(self, policy_id, token, *, reason, withdraw_at=None):
        self.calls.append(("withdraw_policy", policy_id, token, reason, withdraw_at))
        return {"success": True}

    def called(self, operation):
        return [call for call in self.calls if call[0] == operation]


@pytest.fixture
def scripted_agent():
    return ScriptedAgent()


@pytest.fixture
def fake_services():
    return FakeInsuranceServices()


@pytest.fixture
def policy_factory():
    return make_policy


@pytest.fixture
def services_factory():
    return FakeInsuranceServices
