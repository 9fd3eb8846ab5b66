import pytest

from audit_chat.clients.assistant_client import ThreadMessage
from audit_chat.services.summarizer import FALLBACK_SUMMARY, ConversationSummarizer, build_transcript

from conftest import FakeLLMClient


def test_transcript_labels_speakers_in_given_order():
    text = build_transcript([
        ThreadMessage(id="1", role="user", text="Where do I start?"),
        {"role": "assistant", "content": "With email capture."},
        ThreadMessage(id="3", role="user", text="   "),
    ])
    assert text == "User: Where do I start?\n\nAssistant: With email capture."


@pytest.mark.asyncio
async def test_summary_comes_from_the_model():
    llm = FakeLLMClient(text="  Discussed email capture.  ")
    summarizer = ConversationSummarizer(llm_client=llm, max_tokens=300)

    out = await summarizer.summarize([ThreadMessage(id="1", role="user", text="Where do I start?")])

    assert out == "Discussed email capture."
    assert "User: Where do I start?" in llm.calls[0]["user"]
    assert llm.calls[0]["max_tokens"] == 300


@pytest.mark.asyncio
async def test_empty_window_skips_the_model():
    llm = FakeLLMClient()
    assert await ConversationSummarizer(llm_client=llm).summarize([]) == FALLBACK_SUMMARY
    assert llm.calls == []


@pytest.mark.asyncio
async def test_model_failure_or_empty_text_falls_back():
    msgs = [{"role": "user", "text": "hi"}]

    llm = FakeLLMClient()
    llm.error = RuntimeError("quota exceeded")
    assert await ConversationSummarizer(llm_client=llm).summarize(msgs) == FALLBACK_SUMMARY

    assert await ConversationSummarizer(llm_client=FakeLLMClient(text="")).summarize(msgs) == FALLBACK_SUMMARY
