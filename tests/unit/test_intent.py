"""
Unit tests for intent derivation.

The classifier is injected, so these tests pin down how raw classifier
answers map to IntentResult and to the cancel/forward decisions.
"""

import asyncio

import pytest

from adapters.agent_adapter import StubAgentAdapter
from detection.intent import (
    CANCEL_CONTINUE_OPTIONS,
    QUOTE_OPTIONS,
    IntentResult,
    derive_intent,
    is_forward,
    wants_to_cancel,
)
from workflows.runtime.context import RunContext


def _derive(agent, message, options=CANCEL_CONTINUE_OPTIONS):
    return asyncio.run(derive_intent("Continue?", message, options, classifier=agent))


class TestDeriveIntent:
    def test_label_is_normalized(self, scripted_agent):
        scripted_agent.intents.append({"intent": " Cancel ", "confidence": 0.9})

        assert _derive(scripted_agent, "stop") == IntentResult(intent="cancel", confidence=0.9)

    def test_label_outside_options_is_no_signal(self, scripted_agent):
        scripted_agent.intents.append({"intent": "details", "confidence": 0.9})

        assert _derive(scripted_agent, "details?") is None

    def test_bad_confidence_is_no_signal(self, scripted_agent):
        scripted_agent.intents.extend(
            [{"intent": "cancel", "confidence": "high"}, {"intent": "cancel", "confidence": float("nan")}]
        )

        assert _derive(scripted_agent, "a") is None
        assert _derive(scripted_agent, "b") is None

    def test_confidence_is_clamped(self, scripted_agent):
        scripted_agent.intents.append({"intent": "continue", "confidence": 1.7})

        assert _derive(scripted_agent, "yes").confidence == 1.0

    def test_classifier_error_is_no_signal(self):
        class Exploding(StubAgentAdapter):
            async def classify(self, question, user_message, options):
                raise RuntimeError("rate limited")

        assert _derive(Exploding(), "weiter") is None

    def test_classifier_from_run_context(self, scripted_agent):
        scripted_agent.intents.append({"intent": "cancel", "confidence": 0.8})
        run_context = RunContext(classifier=scripted_agent)

        result = asyncio.run(derive_intent("Continue?", "stop", CANCEL_CONTINUE_OPTIONS, run_context=run_context))

        assert result.intent == "cancel"
        assert scripted_agent.classify_calls == [("Continue?", "stop")]


class TestDecisions:
    @pytest.mark.parametrize(
        "result, expected",
        [
            (IntentResult("cancel", 0.9), True),
            (IntentResult("cancel", 0.5), True),
            (IntentResult("cancel", 0.49), False),
            (IntentResult("continue", 0.9), False),
            (None, False),
        ],
    )
    def test_wants_to_cancel(self, result, expected):
        assert wants_to_cancel(result) is expected

    @pytest.mark.parametrize(
        "result, expected",
        [
            (None, True),
            (IntentResult("details", 0.3), True),
            (IntentResult("details", 0.8), False),
            (IntentResult("continue", 0.8), True),
        ],
    )
    def test_is_forward(self, result, expected):
        """Missing or unsure answers move the conversation forward."""
        assert is_forward(result) is expected


class TestStubClassifier:
    def test_cancel_words(self):
        assert _derive(StubAgentAdapter(), "Bitte abbrechen").intent == "cancel"

    def test_details_request(self):
        result = _derive(StubAgentAdapter(), "Ich hätte gern mehr Details", QUOTE_OPTIONS)

        assert result.intent == "details"
        assert is_forward(result) is False

    def test_unclear_reply_is_low_confidence_continue(self):
        result = _derive(StubAgentAdapter(), "hmm", CANCEL_CONTINUE_OPTIONS)

        assert result.intent == "continue"
        assert wants_to_cancel(result) is False
