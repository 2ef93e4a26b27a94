"""
Unit tests for hybrid data collection (extract, merge, validate, decide).

Covers:
- Missing field loop and its completion once the value arrives
- Validation errors winning over missing fields
- Extraction that could not run versus extraction that found nothing
"""

import asyncio
from datetime import date

from adapters.agent_adapter import ExtractionFailure
from workflows.common.capture import MISSING_FIELDS, collect_data_hybrid, revert_invalid_fields
from workflows.runtime.context import RunContext

TODAY = date(2025, 6, 1)
QUESTION = "Wann wurdest du geboren?"


def _collect(agent, keys, user_message, existing=None):
    return asyncio.run(
        collect_data_hybrid(keys, QUESTION, user_message, existing, extractor=agent, today=TODAY)
    )


class TestCollectDataHybrid:
    def test_missing_field_then_completed(self, scripted_agent):
        """A plain greeting leaves the date missing; the next answer completes the step."""
        first = _collect(scripted_agent, ["dateOfBirth"], "Hallo")

        assert first.completed is False
        assert first.error == {"type": MISSING_FIELDS, "fields": ["dateOfBirth"]}

        scripted_agent.extractions.append({"dateOfBirth": "15.08.1992"})
        second = _collect(scripted_agent, ["dateOfBirth"], "I was born on 15.08.1992", first.data_collection)

        assert second.completed is True
        assert second.error is None
        assert second.data_collection["dateOfBirth"] == "1992-08-15"

    def test_invalid_value_reports_validation_error(self, scripted_agent):
        """An impossible date yields one typed error, not a missing-field message."""
        scripted_agent.extractions.append({"dateOfBirth": "31.13.1992"})

        result = _collect(scripted_agent, ["dateOfBirth"], "mein Geburtsdatum ist 31.13.1992")

        assert result.completed is False
        assert result.error == {"type": "wrong_format", "field": "dateOfBirth", "params": {}}

    def test_validation_error_wins_over_missing_fields(self, scripted_agent):
        """Even with other keys missing, the validation error is reported."""
        scripted_agent.extractions.append({"iban": "DE89370400440532013001"})

        result = _collect(scripted_agent, ["iban", "email"], "DE89370400440532013001")

        assert result.error["type"] == "checksum"
        assert result.error["field"] == "iban"

    def test_volunteered_fields_are_kept(self, scripted_agent):
        """Fields for later steps are merged even though only one key is asked for."""
        scripted_agent.extractions.append({"dateOfBirth": "12.04.1985", "email": "erika@example.com"})

        result = _collect(scripted_agent, ["dateOfBirth"], "12.04.1985, erika@example.com")

        assert result.completed is True
        assert result.data_collection["email"] == "erika@example.com"

    def test_existing_values_survive_empty_extraction(self, scripted_agent):
        result = _collect(scripted_agent, ["firstName"], "hm", {"firstName": "Erika"})

        assert result.completed is True
        assert result.data_collection["firstName"] == "Erika"

    def test_extraction_failure_is_flagged(self, scripted_agent):
        """A failure result keeps existing data and marks the turn."""
        scripted_agent.extractions.append(ExtractionFailure(error="timeout"))

        result = _collect(scripted_agent, ["email"], "erika@example.com", {"firstName": "Erika"})

        assert result.extraction_failed is True
        assert result.error == {"type": MISSING_FIELDS, "fields": ["email"]}
        assert result.data_collection["firstName"] == "Erika"

    def test_raising_extractor_becomes_failure(self, scripted_agent):
        scripted_agent.extractions.append(RuntimeError("connection reset"))

        result = _collect(scripted_agent, ["email"], "erika@example.com")

        assert result.extraction_failed is True
        assert result.completed is False

    def test_extractor_taken_from_run_context(self, scripted_agent):
        """Without an explicit extractor the run context collaborator is used."""
        scripted_agent.extractions.append({"email": "erika@example.com"})
        run_context = RunContext(extractor=scripted_agent)

        result = asyncio.run(
            collect_data_hybrid(["email"], "E-Mail?", "erika@example.com", None, run_context=run_context)
        )

        assert result.completed is True
        assert scripted_agent.extract_calls == [("erika@example.com", "E-Mail?")]
        assert "extract" in run_context.timing_summary()

    def test_stub_extractor_reads_birth_date(self):
        """The default stub adapter handles the German birth-date question."""
        result = asyncio.run(
            collect_data_hybrid(["dateOfBirth"], QUESTION, "I was born on 15.08.1992", None, today=TODAY)
        )

        assert result.completed is True
        assert result.data_collection["dateOfBirth"] == "1992-08-15"


class TestRevertInvalidFields:
    def test_invalid_values_fall_back(self):
        """Only fields failing their validator are replaced."""
        data = {"iban": "DE89370400440532013001", "email": "erika@example.com", "zipCode": "abc"}
        fallback = {"iban": None, "zipCode": "10115"}

        safe = revert_invalid_fields(data, fallback, today=TODAY)

        assert safe == {"iban": None, "email": "erika@example.com", "zipCode": "10115"}

    def test_valid_values_are_stored_canonical(self):
        """A valid raw date is rewritten to ISO while the invalid zip is reverted."""
        data = {"dateOfBirth": "12.04.1985", "iban": "de89 3704 0044 0532 0130 00", "zipCode": "00000"}

        safe = revert_invalid_fields(data, {}, today=TODAY)

        assert safe == {"dateOfBirth": "1985-04-12", "iban": "DE89370400440532013000", "zipCode": None}

    def test_invalid_fallback_is_not_restored(self):
        safe = revert_invalid_fields({"zipCode": "abc"}, {"zipCode": "11111"}, today=TODAY)

        assert safe == {"zipCode": None}
