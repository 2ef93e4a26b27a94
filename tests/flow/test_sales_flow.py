"""
End-to-end sales conversations through the real sales workflow.

The deterministic stub agent does extraction and intent classification, and
the business services are faked, so each test reads like a chat transcript.
"""

import asyncio
from datetime import date, timedelta

import pytest

from domain.vocabulary import WorkflowId
from workflows.runtime.context import LOCALE, RunContext
from workflows.runtime.router import route_message


def _text(response):
    message = response["messages"][0]
    if message["type"] == "data":
        return message["content"]["message"]
    return message["content"]


@pytest.fixture
def sales(harness_factory, fake_services):
    return harness_factory(services=fake_services)


def _reach_quote(sales):
    sales.send("Hallo")
    sales.send("Ich bin am 12.04.1985 geboren")
    return sales.send("Für meine ganze Familie")


class TestSalesHappyPath:
    def test_complete_purchase(self, sales, fake_services):
        """From greeting to paid policy in one thread."""
        first = sales.send("Hallo")
        assert _text(first) == "Los geht's! Wann wurdest du geboren?"
        assert first["messages"][0]["content"]["missingKeys"] == ["dateOfBirth"]

        assert _text(sales.send("Ich bin am 12.04.1985 geboren")).startswith("Wen möchtest du versichern?")

        quote = sales.send("Für meine ganze Familie")
        assert _text(quote) == "Perfekt! Dein Monatsbeitrag beträgt 5,49 €. Möchtest du dich jetzt versichern?"
        assert fake_services.called("fetch_quote") == [("fetch_quote", "12345", "1985-04-12", "withFamily")]

        assert _text(sales.send("Ja, weiter")).startswith("Hast du derzeit")
        assert _text(sales.send("Ja")) == "Gab es in den letzten 5 Jahren Schadensfälle?"
        assert _text(sales.send("Nein")) == "Ok, wie lautet dein vollständiger Name?"
        assert _text(sales.send("Ich heiße Erika Mustermann")) == "Wie lautet deine E-Mail-Adresse?"
        assert _text(sales.send("erika@example.com")) == "Wie lautet deine vollständige Adresse?"

        review = _text(sales.send("Hauptstraße 5, 10115 Berlin"))
        assert review.startswith("Bitte bestätige die endgültigen Daten")
        assert "Hauptstraße 5, 10115 Berlin" in review
        assert "Für meine ganze Familie" in review
        assert "12.04.1985" in review

        documents = _text(sales.send("Das ist richtig"))
        assert documents.endswith("/api/documents/draft-1")
        draft_data = fake_services.called("create_policy_draft")[0][1]
        assert draft_data["startDate"] == (date.today() + timedelta(days=1)).isoformat()
        assert draft_data["hasInsurance"] is True
        assert draft_data["hasClaims"] is False

        assert _text(sales.send("ok")).startswith("Bitte bestätige, dass du die Dokumente")
        assert _text(sales.send("ja")) == "Aktuell ist nur SEPA-Lastschrift möglich. Wie lautet deine IBAN?"
        assert _text(sales.send("DE89 3704 0044 0532 0130 00")).startswith("Mit \"Sicher zahlen\"")

        done = sales.send("ja")

        assert _text(done) == "Geschafft, Erika Mustermann! Dein Versicherungsschutz steht."
        assert fake_services.called("pay_policy") == [("pay_policy", "draft-1", "DE89370400440532013000")]
        metadata = sales.metadata()
        assert metadata["activeWorkflow"] is None
        assert metadata["dataCollection"]["city"] == "Berlin"

    def test_volunteered_data_skips_questions(self, sales):
        """Birth date and coverage in the first message go straight to the quote."""
        response = sales.send("Hallo, ich bin am 12.04.1985 geboren und will nur mich versichern")

        assert _text(response).startswith("Perfekt! Dein Monatsbeitrag")

    def test_invalid_date_is_asked_again(self, sales):
        sales.send("Hallo")

        response = sales.send("mein Geburtsdatum ist 31.13.1992")

        content = response["messages"][0]["content"]
        assert content["type"] == "wrong_format"
        assert content["field"] == "dateOfBirth"
        assert sales.metadata()["dataCollection"]["dateOfBirth"] is None

    def test_too_young_is_rejected_with_min_age(self, sales):
        sales.send("Hallo")
        born = date.today() - timedelta(days=15 * 365)

        response = sales.send(f"Ich wurde am {born.strftime('%d.%m.%Y')} geboren")

        content = response["messages"][0]["content"]
        assert content["type"] == "too_young"
        assert content["params"] == {"minAge": "18"}


class TestSalesBranches:
    def test_details_request_gets_follow_up(self, sales):
        _reach_quote(sales)

        details = sales.send("Was ist enthalten? Details bitte")

        assert _text(details).startswith("Dein Monatsbeitrag: 5,49 €")

        assert _text(sales.send("ok")).startswith("Hast du derzeit")

    def test_no_previous_insurance_skips_claims(self, sales):
        _reach_quote(sales)
        sales.send("weiter")

        response = sales.send("Nein")

        assert _text(response) == "Ok, wie lautet dein vollständiger Name?"

    def test_too_many_claims_rejects_and_aborts(self, sales):
        """More claims than allowed ends the run; the thread starts over afterwards."""
        _reach_quote(sales)
        sales.send("weiter")
        sales.send("Ja")
        assert _text(sales.send("Ja")).startswith("Wie oft hattest du")
        run_id = sales.metadata()["activeWorkflow"]["runId"]

        rejected = sales.send("3 Schäden")

        assert _text(rejected).startswith("**Aktuell kein Angebot möglich**")
        assert sales.metadata()["activeWorkflow"] is None
        assert sales.executor.get_run(run_id)["status"] == "canceled"

        assert _text(sales.send("Hallo")) == "Los geht's! Wann wurdest du geboren?"

    def test_allowed_claims_continue(self, sales):
        _reach_quote(sales)
        sales.send("weiter")
        sales.send("Ja")
        sales.send("Ja")

        response = sales.send("2 Schäden")

        assert _text(response) == "Ok, wie lautet dein vollständiger Name?"

    def test_cancel_at_document_step(self, sales):
        """A cancel reply at a confirmation step aborts the run."""
        _reach_quote(sales)
        sales.send("weiter")
        sales.send("Nein")
        sales.send("Ich heiße Erika Mustermann")
        sales.send("erika@example.com")
        sales.send("Hauptstraße 5, 10115 Berlin")
        sales.send("Das ist richtig")

        response = sales.send("Ich will abbrechen")

        assert _text(response).startswith("**Abgebrochen**")
        assert sales.metadata()["activeWorkflow"] is None


class TestSalesPersistence:
    def test_default_json_stores(self, fake_services):
        """Runs and threads round-trip through the JSON database between turns."""

        def send(message):
            run_context = RunContext({LOCALE: "en-GB"}, services=fake_services)
            return asyncio.run(route_message(WorkflowId.SALES, message, "json-thread", "r1", run_context=run_context))

        assert _text(send("Hello")) == "Let's get started! What is your date of birth?"
        assert _text(send("I was born on 12.04.1985")).startswith("Who do you want to insure?")

        quote = send("Just me")

        assert _text(quote) == "Perfect! Your monthly contribution is €5.49. Do you want to get insured now?"
