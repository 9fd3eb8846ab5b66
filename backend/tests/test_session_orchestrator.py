import asyncio
import time

import pytest
from sqlalchemy import event

from audit_chat.models import ChatSession
from audit_chat.repositories.message import MessageRepository
from audit_chat.schemas.stream import DoneEvent, ErrorEvent, ProgressEvent, TokenEvent, WarningEvent
from audit_chat.services.errors import ProviderTransientError
from audit_chat.services.session_orchestrator import TurnLocks
from audit_chat.services.streaming import drain
from audit_chat.services.token_budget import TokenBudgetMonitor


def _answer(events):
    return "".join(e.token for e in events if isinstance(e, TokenEvent))


def _assert_single_done(events):
    assert isinstance(events[-1], DoneEvent)
    assert sum(isinstance(e, DoneEvent) for e in events) == 1


def _roles_balanced(msgs):
    return sum(m.role == "user" for m in msgs) == sum(m.role == "assistant" for m in msgs)


@pytest.mark.asyncio
async def test_first_turn_opens_seeded_thread_and_persists_both_messages(
    make_orchestrator, assistant, session_id, load_messages
):
    events = await drain(make_orchestrator().stream_turn(session_id, "What are my biggest red flags?"))

    _assert_single_done(events)
    assert _answer(events) == assistant.reply
    assert all(len(e.token) <= 16 for e in events if isinstance(e, TokenEvent))

    msgs = load_messages(session_id)
    assert [(m.message_order, m.role) for m in msgs] == [(1, "user"), (2, "assistant")]
    thread_id = msgs[0].thread_id
    assert thread_id and msgs[1].thread_id == thread_id
    assert msgs[0].meta["user_initiated"] is True
    assert msgs[0].meta["intent"] == "substantive"
    assert msgs[1].meta["ai_generated"] is True
    assert msgs[1].run_id == assistant.run_calls[0]["run_id"]

    # The briefing seed lives only in the provider thread
    seed = assistant.threads[thread_id][0]
    assert seed.role == "user"
    assert "MARKETING AUDIT REPORT BRIEFING" in seed.text
    assert all("REPORT BRIEFING" not in m.content for m in msgs)


@pytest.mark.asyncio
async def test_second_turn_reuses_thread_with_next_ordinals(make_orchestrator, assistant, session_id, load_messages):
    orch = make_orchestrator()
    await drain(orch.stream_turn(session_id, "What are my biggest red flags?"))
    events = await drain(orch.stream_turn(session_id, "Thanks!"))

    _assert_single_done(events)
    msgs = load_messages(session_id)
    assert [m.message_order for m in msgs] == [1, 2, 3, 4]
    assert msgs[2].role == "user" and msgs[3].role == "assistant"
    assert len({m.thread_id for m in msgs}) == 1
    assert "rotated_from" not in msgs[2].meta
    assert len(assistant.run_calls) == 2
    assert all(c["assistant_id"] == "asst_marketing_test" for c in assistant.run_calls)


@pytest.mark.asyncio
async def test_run_instructions_follow_message_intent(make_orchestrator, assistant, session_id, load_messages):
    orch = make_orchestrator()
    await drain(orch.stream_turn(session_id, "Hello!"))
    await drain(orch.stream_turn(session_id, "How should I split my ad budget across channels?"))

    greeting, substantive = (c["instructions"] for c in assistant.run_calls)
    assert "greeting" in greeting
    assert "specific findings" in substantive
    assert [m.meta.get("intent") for m in load_messages(session_id) if m.role == "user"] == ["greeting", "substantive"]


@pytest.mark.asyncio
async def test_session_gets_named_from_first_message(make_orchestrator, session_id, session_factory):
    orch = make_orchestrator()
    await drain(orch.stream_turn(session_id, "  what should i fix first?  "))
    await drain(orch.stream_turn(session_id, "And after that?"))

    s = session_factory()
    try:
        row = s.get(ChatSession, session_id)
        assert row.name == "What should i fix first?"
        assert row.message_count == 4
    finally:
        s.close()


@pytest.mark.asyncio
async def test_over_budget_thread_is_rotated_before_the_turn(
    make_orchestrator, assistant, llm, session_id, load_messages
):
    await drain(make_orchestrator().stream_turn(session_id, "What are my biggest red flags?"))
    old_thread = load_messages(session_id)[0].thread_id

    rotating = make_orchestrator(monitor=TokenBudgetMonitor(assistant, threshold_tokens=10))
    events = await drain(rotating.stream_turn(session_id, "How do I fix the tracking issue?"))

    _assert_single_done(events)
    assert isinstance(events[0], WarningEvent) and events[0].code == "thread_rotated"
    assert _answer(events) == assistant.reply

    msgs = load_messages(session_id)
    assert [m.message_order for m in msgs] == [1, 2, 3, 4]
    new_thread = msgs[2].thread_id
    assert new_thread != old_thread
    assert msgs[3].thread_id == new_thread
    assert msgs[2].meta["rotated_from"] == old_thread
    assert all("PREVIOUS CONVERSATION SUMMARY" not in m.content for m in msgs)

    seed = assistant.threads[new_thread][0]
    assert "PREVIOUS CONVERSATION SUMMARY:\n" + llm.text in seed.text
    assert "We are continuing our marketing audit discussion" in seed.text
    # the summary was built from the old thread, oldest first
    assert "User: What are my biggest red flags?" in llm.calls[0]["user"]
    assert "MARKETING AUDIT REPORT BRIEFING" not in llm.calls[0]["user"]
    assert assistant.run_calls[-1]["thread_id"] == new_thread


@pytest.mark.asyncio
async def test_rotation_failure_ends_turn_before_user_message_is_saved(
    make_orchestrator, assistant, session_id, load_messages
):
    await drain(make_orchestrator().stream_turn(session_id, "What are my biggest red flags?"))
    assistant.fail["create_thread"] = RuntimeError("provider down")

    rotating = make_orchestrator(monitor=TokenBudgetMonitor(assistant, threshold_tokens=10))
    events = await drain(rotating.stream_turn(session_id, "And the next step?"))

    _assert_single_done(events)
    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert len(errors) == 1 and errors[0].code == "ROTATION_FAILED"
    assert len(load_messages(session_id)) == 2
    assert len(assistant.run_calls) == 1


@pytest.mark.asyncio
async def test_monitor_failure_keeps_using_current_thread(make_orchestrator, assistant, session_id, load_messages):
    orch = make_orchestrator(monitor=TokenBudgetMonitor(assistant, threshold_tokens=10))
    await drain(orch.stream_turn(session_id, "What are my biggest red flags?"))

    # list_messages is only used by the monitor on this path
    assistant.fail["list_messages"] = ProviderTransientError("listing timed out")
    events = await drain(orch.stream_turn(session_id, "And then?"))

    assert not any(isinstance(e, (WarningEvent, ErrorEvent)) for e in events)
    msgs = load_messages(session_id)
    assert len(msgs) == 4
    assert len({m.thread_id for m in msgs}) == 1


@pytest.mark.asyncio
async def test_failed_run_is_answered_with_error_message(make_orchestrator, assistant, session_id, load_messages):
    assistant.statuses = ["in_progress", ("failed", "server_error")]
    events = await drain(make_orchestrator().stream_turn(session_id, "What are my red flags?"))

    _assert_single_done(events)
    error = next(e for e in events if isinstance(e, ErrorEvent))
    assert error.code == "PROVIDER_TERMINAL"
    assert "failed" in error.error
    assert not any(isinstance(e, TokenEvent) for e in events)

    msgs = load_messages(session_id)
    assert [(m.message_order, m.role) for m in msgs] == [(1, "user"), (2, "assistant")]
    assert msgs[1].meta["error"] is True
    assert msgs[1].error_type == "provider_terminal"
    assert msgs[1].content == error.error
    assert _roles_balanced(msgs)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["cancelled", "expired", "requires_action"])
async def test_other_terminal_statuses_end_the_turn(make_orchestrator, assistant, session_id, load_messages, status):
    assistant.statuses = [status]
    events = await drain(make_orchestrator().stream_turn(session_id, "What are my red flags?"))

    _assert_single_done(events)
    assert [e.code for e in events if isinstance(e, ErrorEvent)] == ["PROVIDER_TERMINAL"]
    assert _roles_balanced(load_messages(session_id))


@pytest.mark.asyncio
async def test_poll_timeout_emits_progress_then_error(make_orchestrator, assistant, sleeper, session_id, load_messages):
    assistant.statuses = ["in_progress"] * 5
    events = await drain(make_orchestrator().stream_turn(session_id, "What are my red flags?"))

    _assert_single_done(events)
    progress = [e for e in events if isinstance(e, ProgressEvent)]
    assert [p.attempt for p in progress] == [3]
    assert [e.code for e in events if isinstance(e, ErrorEvent)] == ["PROVIDER_TIMEOUT"]
    assert sleeper.calls == [2.0] * 5

    msgs = load_messages(session_id)
    assert msgs[-1].error_type == "provider_timeout"
    assert _roles_balanced(msgs)


@pytest.mark.asyncio
async def test_transient_poll_errors_are_retried_within_budget(
    make_orchestrator, assistant, sleeper, session_id, load_messages
):
    assistant.statuses = [ProviderTransientError("502 from upstream"), "in_progress", "completed"]
    events = await drain(make_orchestrator().stream_turn(session_id, "What are my red flags?"))

    _assert_single_done(events)
    assert not any(isinstance(e, ErrorEvent) for e in events)
    assert _answer(events) == assistant.reply
    assert sleeper.calls == [2.0, 2.0, 2.0]
    assert len(assistant.run_calls) == 1
    assert [m.role for m in load_messages(session_id)] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_transient_errors_count_toward_timeout(make_orchestrator, assistant, session_id):
    assistant.statuses = [ProviderTransientError("blip")] * 5
    events = await drain(make_orchestrator().stream_turn(session_id, "What are my red flags?"))

    assert [e.code for e in events if isinstance(e, ErrorEvent)] == ["PROVIDER_TIMEOUT"]
    _assert_single_done(events)


@pytest.mark.asyncio
async def test_dispatch_failure_is_terminal_and_not_redispatched(
    make_orchestrator, assistant, session_id, load_messages
):
    assistant.fail["create_run"] = ProviderTransientError("rate limited")
    events = await drain(make_orchestrator().stream_turn(session_id, "What are my red flags?"))

    _assert_single_done(events)
    assert [e.code for e in events if isinstance(e, ErrorEvent)] == ["PROVIDER_TRANSIENT"]
    assert assistant.run_calls == []
    msgs = load_messages(session_id)
    assert [m.role for m in msgs] == ["user", "assistant"]
    assert msgs[1].meta["error"] is True


@pytest.mark.asyncio
async def test_assistant_persist_failure_still_streams_answer(make_orchestrator, assistant, session_id, load_messages):
    repo = MessageRepository()

    def broken(*args, **kwargs):
        raise RuntimeError("disk full")
    repo.create_assistant_message = broken

    events = await drain(make_orchestrator(msg_repo=repo).stream_turn(session_id, "What are my red flags?"))

    _assert_single_done(events)
    warnings = [e for e in events if isinstance(e, WarningEvent)]
    assert [w.code for w in warnings] == ["not_saved"]
    assert _answer(events) == assistant.reply
    assert [m.role for m in load_messages(session_id)] == ["user"]


@pytest.mark.asyncio
async def test_unknown_or_archived_session_fails_cleanly(make_orchestrator, assistant, session_id, db, load_messages):
    events = await drain(make_orchestrator().stream_turn(999, "hello"))
    assert [type(e) for e in events] == [ErrorEvent, DoneEvent]
    assert events[0].code == "NOT_FOUND"

    s = db.get(ChatSession, session_id)
    s.is_active = False
    db.commit()

    events = await drain(make_orchestrator().stream_turn(session_id, "hello"))
    assert events[0].code == "NOT_FOUND"
    assert load_messages(session_id) == []
    assert assistant.threads == {}


@pytest.mark.asyncio
async def test_concurrent_turns_on_one_session_are_serialized(make_orchestrator, session_id, load_messages):
    orch = make_orchestrator()
    results = await asyncio.gather(
        drain(orch.stream_turn(session_id, "What are my red flags?")),
        drain(orch.stream_turn(session_id, "Which opportunity is biggest?")),
    )

    for events in results:
        _assert_single_done(events)
        assert not any(isinstance(e, ErrorEvent) for e in events)
    msgs = load_messages(session_id)
    assert [m.message_order for m in msgs] == [1, 2, 3, 4]
    assert [m.role for m in msgs] == ["user", "assistant", "user", "assistant"]


@pytest.mark.asyncio
async def test_stale_ordinal_from_another_worker_is_rejected_before_dispatch(
    make_orchestrator, assistant, session_id, load_messages
):
    await drain(make_orchestrator().stream_turn(session_id, "What are my red flags?"))

    # A second worker that read the ordinal before the first one committed
    stale = MessageRepository()
    stale.next_order = lambda db, sid: 1
    events = await drain(make_orchestrator(msg_repo=stale).stream_turn(session_id, "Racing message"))

    _assert_single_done(events)
    error = next(e for e in events if isinstance(e, ErrorEvent))
    assert error.code == "PERSISTENCE_FAILED"
    assert "still being answered" in error.error
    assert len(assistant.run_calls) == 1
    assert len(load_messages(session_id)) == 2


@pytest.mark.asyncio
async def test_turn_locks_are_dropped_once_turns_finish(make_orchestrator, session_id):
    locks = TurnLocks()
    held = []

    async def sleep(seconds):
        held.append(len(locks))

    orch = make_orchestrator(locks=locks, sleep=sleep)
    await drain(orch.stream_turn(session_id, "What are my red flags?"))
    await drain(orch.stream_turn(session_id, "Which opportunity is biggest?"))

    assert held and set(held) == {1}
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_slow_store_does_not_stall_the_event_loop(make_orchestrator, engine, session_id, load_messages):
    def slow_statement(*args):
        time.sleep(0.08)

    async def sleep(seconds):
        await asyncio.sleep(0)

    finished = asyncio.Event()
    gaps = []

    async def ticker():
        last = time.perf_counter()
        while not finished.is_set():
            await asyncio.sleep(0.005)
            now = time.perf_counter()
            gaps.append(now - last)
            last = now

    event.listen(engine, "before_cursor_execute", slow_statement)
    ticks = asyncio.create_task(ticker())
    try:
        events = await drain(make_orchestrator(sleep=sleep).stream_turn(session_id, "What are my red flags?"))
    finally:
        finished.set()
        await ticks
        event.remove(engine, "before_cursor_execute", slow_statement)

    _assert_single_done(events)
    assert not any(isinstance(e, ErrorEvent) for e in events)
    assert [m.role for m in load_messages(session_id)] == ["user", "assistant"]
    # each statement takes 80ms; the loop kept ticking through all of them
    assert len(gaps) > 10
    assert max(gaps) < 0.06
