"""Adapters that expose extraction and intent agents to the workflow steps.

Tests can call `reset_agent_adapter()` to clear the shared singletons between runs.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from domain.models import DataCollection, schema_description
from llm.provider_config import get_llm_providers

logger = logging.getLogger(__name__)


@dataclass
class ExtractionSuccess:
    """Fields the extraction agent found (possibly none)."""

    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExtractionFailure:
    """The extraction agent could not produce a usable answer."""

    error: str


ExtractionResult = Union[ExtractionSuccess, ExtractionFailure]


EXTRACTION_INSTRUCTIONS = (
    "Extract only values the user states explicitly in the message. "
    "Never invent, guess or complete dates, amounts, names or numbers. "
    "Dates stay exactly as written by the user. "
    "Use null for every field the message does not mention. "
    "Respond with a JSON object whose keys are the field names below."
)


def coerce_to_schema(payload: Mapping[str, Any], schema: Type[BaseModel]) -> Dict[str, Any]:
    """Keep schema fields only and drop values the schema rejects.

    A single bad value (e.g. an unknown enum label) must not discard the other
    extracted fields, so offending fields are removed and validation retried.
    """

    candidate = {key: payload.get(key) for key in schema.model_fields if key in payload}
    for _ in range(len(candidate) + 1):
        try:
            return schema.model_validate(candidate).model_dump(include=set(candidate))
        except ValidationError as exc:
            bad = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
            if not bad:
                return {}
            logger.debug("[AGENT] dropping invalid extracted fields %s", sorted(bad))
            for key in bad:
                candidate.pop(key, None)
    return {}


class AgentAdapter:
    """Base adapter defining the agent interface for extraction and intent routing."""

    async def extract(
        self,
        user_message: str,
        question: str,
        schema: Type[BaseModel] = DataCollection,
    ) -> ExtractionResult:
        """Extract structured fields from ``user_message`` answering ``question``."""

        raise NotImplementedError("extract must be implemented by subclasses.")

    async def classify(
        self,
        question: str,
        user_message: str,
        options: Mapping[str, str],
    ) -> Optional[Dict[str, Any]]:
        """Return ``{"intent": label, "confidence": float}`` or ``None``."""

        raise NotImplementedError("classify must be implemented by subclasses.")


class StubAgentAdapter(AgentAdapter):
    """Deterministic heuristic stub used for tests and offline development."""

    CANCEL_WORDS = ("cancel", "stop", "stopp", "abbrechen", "abbruch", "nicht mehr")
    DETAIL_WORDS = ("detail", "details", "mehr info", "was ist enthalten", "what's included", "compare", "vergleich")
    CONTINUE_WORDS = ("weiter", "passt", "ok", "okay", "ja", "yes", "continue", "go on", "alles klar", "danke")
    YES_WORDS = ("ja", "yes", "jup", "klar", "habe ich", "i do", "i have")
    NO_WORDS = ("nein", "no", "keine", "none", "nicht", "never", "nie")

    COVERAGE_WORDS = {
        "withFamily": ("familie", "family"),
        "withChildren": ("kind", "kinder", "child", "children"),
        "withPartner": ("partner", "partnerin", "ehefrau", "ehemann", "wife", "husband"),
        "single": ("single", "allein", "nur mich", "just me", "myself"),
    }

    _EMAIL = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@,;]+")
    _IBAN = re.compile(r"\bDE\d{2}(?:\s?\d){18}\b", re.IGNORECASE)
    _ZIP = re.compile(r"\b(\d{5})\b")
    _DATE = re.compile(
        r"\b(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{1,2}\.?\s+[A-Za-zäÄ]{3,9}\.?\s+\d{4})\b"
    )
    _NAME = re.compile(
        r"(?i:my name is|i am|i'm|ich heiße|ich heisse|mein name ist|ich bin)\s+"
        r"([A-ZÄÖÜ][a-zäöüß'-]+)\s+([A-ZÄÖÜ][a-zäöüß'-]+)"
    )
    _CLAIMS = re.compile(r"\b(\d{1,2})\s*(?:claims?|schäden|schadensfälle|schadensfall|schaden)\b", re.IGNORECASE)
    _POLICY = re.compile(r"\b([A-Z]{2,4}-?\d{4,})\b")
    _ADDRESS = re.compile(
        r"([A-ZÄÖÜ][\wäöüß.-]*(?:\s[\wäöüß.-]+)*?)\s+(\d+\s?[a-zA-Z]?),?\s+(\d{5})\s+([A-ZÄÖÜ][\wäöüß-]+(?:\s[A-ZÄÖÜ][\wäöüß-]+)*)"
    )

    async def extract(
        self,
        user_message: str,
        question: str,
        schema: Type[BaseModel] = DataCollection,
    ) -> ExtractionResult:
        text = user_message or ""
        lower = text.lower()
        lower_question = (question or "").lower()
        found: Dict[str, Any] = {}

        email = self._EMAIL.search(text)
        if email:
            found["email"] = email.group(0)
        iban = self._IBAN.search(text)
        if iban:
            found["iban"] = iban.group(0)
        name = self._NAME.search(text)
        if name:
            found["firstName"] = name.group(1)
            found["lastName"] = name.group(2)
        policy = self._POLICY.search(text)
        if policy:
            found["policyId"] = policy.group(1)

        date_match = self._DATE.search(text)
        if date_match:
            target = "dateOfBirth"
            asks_birth = any(word in lower_question for word in ("geboren", "geburt", "birth"))
            if not asks_birth and any(word in lower_question for word in ("kündig", "termination", "cancel", "beenden")):
                target = "policyTerminationDate"
            elif not asks_birth and any(word in lower_question for word in ("beginn", "start")):
                target = "startDate"
            found[target] = date_match.group(1)

        text_without_iban = self._POLICY.sub(" ", self._IBAN.sub(" ", text))
        zip_match = self._ZIP.search(self._DATE.sub(" ", text_without_iban))
        if zip_match:
            found["zipCode"] = zip_match.group(1)
        address = self._ADDRESS.search(text_without_iban)
        if address:
            found["street"] = address.group(1).strip()
            found["houseNumber"] = address.group(2).replace(" ", "")
            found["zipCode"] = address.group(3)
            found["city"] = address.group(4).strip()

        for scope, words in self.COVERAGE_WORDS.items():
            if any(re.search(rf"\b{re.escape(word)}\b", lower) for word in words):
                found["coverageScope"] = scope
                break

        claims = self._CLAIMS.search(text)
        if claims:
            found["claimCount"] = int(claims.group(1))

        answer = self._yes_no(lower)
        if answer is not None:
            if any(word in lower_question for word in ("schäden", "schaden", "claim", "damage")):
                found["hasClaims"] = answer
            elif any(word in lower_question for word in ("versichert", "versicherung", "insurance", "insured")):
                found["hasInsurance"] = answer

        return ExtractionSuccess(data=coerce_to_schema(found, schema))

    def _yes_no(self, lower: str) -> Optional[bool]:
        tokens = set(re.findall(r"[a-zäöüß']+", lower))
        if tokens & {word for word in self.NO_WORDS if " " not in word}:
            return False
        if tokens & {word for word in self.YES_WORDS if " " not in word}:
            return True
        return None

    async def classify(
        self,
        question: str,
        user_message: str,
        options: Mapping[str, str],
    ) -> Optional[Dict[str, Any]]:
        lower = (user_message or "").lower()
        if "cancel" in options and any(word in lower for word in self.CANCEL_WORDS):
            return {"intent": "cancel", "confidence": 0.9}
        if "details" in options and any(word in lower for word in self.DETAIL_WORDS):
            return {"intent": "details", "confidence": 0.8}
        if "continue" in options:
            tokens = set(re.findall(r"[a-zäöüß']+", lower))
            if tokens & {word for word in self.CONTINUE_WORDS if " " not in word}:
                return {"intent": "continue", "confidence": 0.9}
            return {"intent": "continue", "confidence": 0.4}
        return None


class OpenAIAgentAdapter(AgentAdapter):
    """Adapter backed by OpenAI chat completions for extraction and intent tasks."""

    _EXTRACTION_PROMPT_TEMPLATE = (
        "Today is {today}. You extract structured data from a user's answer in an "
        "insurance conversation.\n{instructions}\n\nFields:\n{fields}"
    )
    _INTENT_PROMPT_TEMPLATE = (
        "Classify the user's reply to the question below. Respond with JSON object "
        "{{\"intent\": <one of {labels}>, \"confidence\": <0-1 float>}}.\n\nLabels:\n{descriptions}"
    )

    def __init__(self, *, extraction_model: Optional[str] = None, intent_model: Optional[str] = None) -> None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is required when AGENT_MODE=openai")
        self._client = AsyncOpenAI(api_key=api_key)
        settings = get_llm_providers()
        self._extraction_model = extraction_model or settings.extraction_model
        self._intent_model = intent_model or settings.intent_model

    async def _run_completion(self, *, system: str, user: str, model: str) -> Dict[str, Any]:
        response = await self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else "{}"
        parsed = json.loads(content or "{}")
        if not isinstance(parsed, dict):
            raise ValueError("Agent response is not a JSON object")
        return parsed

    async def extract(
        self,
        user_message: str,
        question: str,
        schema: Type[BaseModel] = DataCollection,
    ) -> ExtractionResult:
        system = self._EXTRACTION_PROMPT_TEMPLATE.format(
            today=date.today().isoformat(),
            instructions=EXTRACTION_INSTRUCTIONS,
            fields=schema_description(schema),
        )
        user = f"Question: {question}\n\nUser message:\n{user_message}"
        try:
            payload = await self._run_completion(system=system, user=user, model=self._extraction_model)
        except Exception as exc:  # network, API or JSON errors all degrade to a failure value
            logger.warning("[AGENT] extraction failed: %s", exc)
            return ExtractionFailure(error=str(exc))
        return ExtractionSuccess(data=coerce_to_schema(payload, schema))

    async def classify(
        self,
        question: str,
        user_message: str,
        options: Mapping[str, str],
    ) -> Optional[Dict[str, Any]]:
        labels: List[str] = list(options)
        system = self._INTENT_PROMPT_TEMPLATE.format(
            labels=" | ".join(labels),
            descriptions="\n".join(f"- {label}: {text}" for label, text in options.items()),
        )
        user = f"Question: {question}\n\nUser reply:\n{user_message}"
        try:
            return await self._run_completion(system=system, user=user, model=self._intent_model)
        except Exception as exc:
            logger.warning("[AGENT] intent classification failed: %s", exc)
            return None


# Per-provider singletons so extraction and intent may use different backends
_PROVIDER_ADAPTERS: Dict[str, AgentAdapter] = {}


def get_adapter_for_provider(provider: str) -> AgentAdapter:
    """Get (or lazily create) the adapter for ``provider`` ("openai" or "stub")."""

    provider = provider.lower()
    if provider in _PROVIDER_ADAPTERS:
        return _PROVIDER_ADAPTERS[provider]

    if provider == "stub":
        _PROVIDER_ADAPTERS[provider] = StubAgentAdapter()
    elif provider == "openai":
        _PROVIDER_ADAPTERS[provider] = OpenAIAgentAdapter()
    else:
        raise RuntimeError(f"Unsupported provider: {provider}")
    return _PROVIDER_ADAPTERS[provider]


def get_extraction_adapter() -> AgentAdapter:
    return get_adapter_for_provider(get_llm_providers().extraction_provider)


def get_intent_adapter() -> AgentAdapter:
    return get_adapter_for_provider(get_llm_providers().intent_provider)


def reset_agent_adapter() -> None:
    """Reset the cached adapter instances (used by tests)."""

    _PROVIDER_ADAPTERS.clear()
