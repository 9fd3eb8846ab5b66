import pytest

from audit_chat.services.intent_service import IntentService


@pytest.fixture
def svc():
    return IntentService()


@pytest.mark.parametrize("text", ["Hi", "hello there!", "Good morning"])
def test_greetings(svc, text):
    assert svc.classify(text).intent == "greeting"


@pytest.mark.parametrize("text", ["thanks", "ok cool", "?", "lol"])
def test_light_conversation(svc, text):
    assert svc.classify(text).intent == "conversational"


@pytest.mark.parametrize("text", [
    "What should I fix first on my website?",
    "How do I improve my social media strategy",
    "Explain the red flag about email",
    "Which recommendation has the best ROI?",
])
def test_report_questions_are_substantive(svc, text):
    result = svc.classify(text)
    assert result.intent == "substantive"
    assert result.signals["matched_keywords"]


def test_greeting_with_business_content_is_not_a_greeting(svc):
    assert svc.classify("hi, what is my website score?").intent == "substantive"


def test_instructions_depend_on_intent_and_report(svc):
    greet = svc.instructions_for("greeting", "website")
    full = svc.instructions_for("substantive", "marketing")
    assert "website analysis" in greet
    assert "marketing audit" in full
    assert greet != svc.instructions_for("conversational", "website") != full
