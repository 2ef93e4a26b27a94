"""Short localized texts shown by workflow steps (de-DE and en-GB)."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from workflows.common.datetime_parse import format_long_date
from workflows.io.config_store import DEFAULT_LOCALE, normalize_locale

_CANCELED = {
    "de-DE": "**Abgebrochen**\n\nDu kannst gerne eine neue Anfrage starten, sobald du wieder bereit bist.",
    "en-GB": "**Canceled**\n\nYou can start a new request whenever you are ready.",
}

_WORKFLOW_MESSAGES: Dict[str, Dict[str, Dict[str, str]]] = {
    "sales": {
        "de-DE": {
            "step_1_1": "Los geht's! Wann wurdest du geboren?",
            "step_1_2": "Wen möchtest du versichern? Nur dich, dich und deinen Partner, dich und deine Kinder oder deine ganze Familie?",
            "step_2_1": "Perfekt! Dein Monatsbeitrag beträgt {price}. Möchtest du dich jetzt versichern?",
            "step_2_2": "Dein Monatsbeitrag: {price}. Enthalten sind 50 Mio. € Deckungssumme, Schlüsselverlust und Forderungsausfall. Möchtest du dich jetzt versichern?",
            "step_3_1": "Hast du derzeit oder hattest du in den letzten 5 Jahren eine private Haftpflichtversicherung?",
            "step_3_2": "Gab es in den letzten 5 Jahren Schadensfälle?",
            "step_3_3": "Wie oft hattest du in den letzten 5 Jahren Schäden, egal ob gemeldet oder nicht?",
            "step_4_1": "Ok, wie lautet dein vollständiger Name?",
            "step_4_2": "Wie lautet deine E-Mail-Adresse?",
            "step_4_3": "Wie lautet deine vollständige Adresse?",
            "step_5_1": "Bitte bestätige die endgültigen Daten für deinen Vertrag:",
            "step_5_1_1": "Stimmt alles? Dann antworte mit \"Das ist richtig\", sonst nenne mir die Änderungen.",
            "step_5_2": "Möchtest du noch etwas ändern?",
            "step_5_2_1": "Antworte mit \"Nein, weiter\" oder nenne mir die Änderungen.",
            "step_5_3": "Bitte überprüfe die bereitgestellten Dokumente: {downloadUrl}",
            "step_5_4": "Bitte bestätige, dass du die Dokumente gelesen hast und ihnen zustimmst.",
            "step_6_1": "Aktuell ist nur SEPA-Lastschrift möglich. Wie lautet deine IBAN?",
            "step_6_2": "Mit \"Sicher zahlen\" erteilst du uns ein SEPA-Lastschriftmandat. Möchtest du fortfahren?",
            "step_success": "Geschafft, {firstName} {lastName}! Dein Versicherungsschutz steht.",
            "step_rejected": "**Aktuell kein Angebot möglich**\n\nLeider können wir dir auf Basis deiner Angaben aktuell keine Haftpflichtversicherung anbieten.",
            "step_cancel": _CANCELED["de-DE"],
        },
        "en-GB": {
            "step_1_1": "Let's get started! What is your date of birth?",
            "step_1_2": "Who do you want to insure? Only you, you and your partner, you and your children, or your whole family?",
            "step_2_1": "Perfect! Your monthly contribution is {price}. Do you want to get insured now?",
            "step_2_2": "Your monthly contribution: {price}. It includes €50 million coverage, key loss and default on claims. Do you want to get insured now?",
            "step_3_1": "Do you currently have or have you had private liability insurance in the last 5 years?",
            "step_3_2": "Have you had any damages in the last 5 years?",
            "step_3_3": "How many times have you had damages in the last 5 years, whether reported or not?",
            "step_4_1": "Ok, now what is your full name?",
            "step_4_2": "What is your email address?",
            "step_4_3": "What is your full address?",
            "step_5_1": "Please confirm the final data for your contract:",
            "step_5_1_1": "If everything is right, reply \"That is correct\", otherwise tell me what to change.",
            "step_5_2": "Anything else you want to change?",
            "step_5_2_1": "Reply \"No, continue\" or tell me what to change.",
            "step_5_3": "Please check the provided documents: {downloadUrl}",
            "step_5_4": "Please confirm that you have read the documents and agree to them.",
            "step_6_1": "Currently only SEPA direct debit is possible. What is your IBAN?",
            "step_6_2": "By choosing \"Pay securely\" you grant us a SEPA direct debit mandate. Do you want to continue?",
            "step_success": "Done, {firstName} {lastName}! Your insurance coverage is active.",
            "step_rejected": "**Currently no offer available**\n\nUnfortunately we cannot offer you liability insurance based on your information.",
            "step_cancel": _CANCELED["en-GB"],
        },
    },
    "authentication": {
        "de-DE": {
            "step_data_1": "Um dich zu identifizieren, brauche ich deine Versicherungsnummer, deinen Vor- und Nachnamen sowie dein Geburtsdatum.",
        },
        "en-GB": {
            "step_data_1": "To identify you I need your policy number, your first and last name and your date of birth.",
        },
    },
    "policyManagement": {
        "de-DE": {
            "step_policy_data_1": (
                "Vertrag {policyId}\n- Name: {firstName} {lastName}\n- Geburtsdatum: {dateOfBirth}\n"
                "- E-Mail: {email}\n- Adresse: {address}\n- Deckung: {coverageType}\n- Beginn: {startDate}\n"
                "- IBAN: {iban}\n- Kündigung: {cancellations}\n- Widerruf: {withdrawals}"
            ),
        },
        "en-GB": {
            "step_policy_data_1": (
                "Policy {policyId}\n- Name: {firstName} {lastName}\n- Date of birth: {dateOfBirth}\n"
                "- Email: {email}\n- Address: {address}\n- Coverage: {coverageType}\n- Start: {startDate}\n"
                "- IBAN: {iban}\n- Cancellation: {cancellations}\n- Withdrawal: {withdrawals}"
            ),
        },
    },
    "policyManagementTerminate": {
        "de-DE": {
            "step_collect_cancellation": "Warum und zu welchem Datum möchtest du deinen Vertrag kündigen?",
            "step_collect_withdrawal": "Warum möchtest du deinen Vertrag widerrufen?",
            "step_confirm_cancellation": "Soll ich die Kündigung jetzt einreichen?",
            "step_confirm_withdrawal": "Soll ich den Widerruf jetzt einreichen?",
            "step_applied": "Deine Anfrage wurde übermittelt. Du erhältst in Kürze eine Bestätigung per E-Mail.",
            "step_not_needed": "Dein Vertrag ist bereits gekündigt oder widerrufen.",
            "step_cancel": _CANCELED["de-DE"],
        },
        "en-GB": {
            "step_collect_cancellation": "Why and as of which date do you want to cancel your policy?",
            "step_collect_withdrawal": "Why do you want to withdraw from your policy?",
            "step_confirm_cancellation": "Shall I submit the cancellation now?",
            "step_confirm_withdrawal": "Shall I submit the withdrawal now?",
            "step_applied": "Your request has been submitted. You will receive a confirmation by email shortly.",
            "step_not_needed": "Your policy has already been cancelled or withdrawn.",
            "step_cancel": _CANCELED["en-GB"],
        },
    },
}

_LABELS: Dict[str, Dict[str, Any]] = {
    "de-DE": {
        "genericError": "Es ist ein Fehler aufgetreten. Bitte versuche es später erneut.",
        "dataReview": (
            "- Name: {firstName} {lastName}\n- Geburtsdatum: {dateOfBirth}\n- E-Mail-Adresse: {email}\n"
            "- Adresse: {street} {houseNumber}, {zipCode} {city}\n- Deckung: {coverageScope}\n"
            "- Betrag: {amount}\n- Startdatum: {startDate}"
        ),
        "coverageScopes": {
            "single": "Nur für mich",
            "withPartner": "Für mich und meinen Partner",
            "withChildren": "Für mich und meine Kinder",
            "withFamily": "Für meine ganze Familie",
        },
        "none": "Keine",
        "policyStatus": {"cancelled": "Gekündigt", "withdrawn": "Widerrufen", "requested": "Beantragt"},
    },
    "en-GB": {
        "genericError": "An error occurred. Please try again.",
        "dataReview": (
            "- Name: {firstName} {lastName}\n- Date of Birth: {dateOfBirth}\n- Email Address: {email}\n"
            "- Address: {street} {houseNumber}, {zipCode} {city}\n- Coverage: {coverageScope}\n"
            "- Amount: {amount}\n- Start Date: {startDate}"
        ),
        "coverageScopes": {
            "single": "Only for me",
            "withPartner": "For me and my partner",
            "withChildren": "For me and my children",
            "withFamily": "For my entire family",
        },
        "none": "None",
        "policyStatus": {"cancelled": "Cancelled", "withdrawn": "Withdrawn", "requested": "Requested"},
    },
}


class _SafeFormat(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def fill(template: str, values: Mapping[str, Any]) -> str:
    """Substitute ``{name}`` placeholders, leaving unknown ones untouched."""

    clean = {key: ("" if value is None else value) for key, value in values.items()}
    return template.format_map(_SafeFormat(clean))


def has_workflow_message(namespace: str, key: str) -> bool:
    return key in _WORKFLOW_MESSAGES.get(namespace, {}).get(DEFAULT_LOCALE, {})


def get_workflow_message(locale: Optional[str], namespace: str, key: str) -> str:
    table = _WORKFLOW_MESSAGES[namespace]
    locale = normalize_locale(locale)
    return table.get(locale, table[DEFAULT_LOCALE]).get(key) or table[DEFAULT_LOCALE][key]


def get_label(locale: Optional[str], key: str) -> Any:
    return _LABELS[normalize_locale(locale)][key]


def format_price(amount: Optional[float], locale: Optional[str]) -> str:
    value = float(amount or 0)
    if normalize_locale(locale) == "en-GB":
        return f"€{value:,.2f}"
    text = f"{value:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"{text} €"


def format_data_review(locale: Optional[str], data: Mapping[str, Any], quote: Optional[Mapping[str, Any]]) -> str:
    scopes = get_label(locale, "coverageScopes")
    gross = ((quote or {}).get("data") or {}).get("gross")
    values = dict(data)
    values["coverageScope"] = scopes.get(data.get("coverageScope"), data.get("coverageScope") or "")
    values["dateOfBirth"] = format_long_date(data.get("dateOfBirth"), normalize_locale(locale))
    values["startDate"] = format_long_date(data.get("startDate"), normalize_locale(locale))
    values["amount"] = format_price(gross, locale)
    return fill(get_label(locale, "dataReview"), values)
