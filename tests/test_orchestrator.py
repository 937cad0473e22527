from unittest.mock import MagicMock

import pytest

from tests.support.fake_completion import ScriptedCompletionProvider, decision_json
from userkb.chat.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    NoToolEvent,
    ToolErrorEvent,
    ToolResultEvent,
)
from userkb.chat.orchestrator import ChatOrchestrator, ChatTurn, StageSettings
from userkb.chat.persistence import ConversationRecorder
from userkb.errors import ProviderUnavailable
from userkb.metrics import OperationMetrics
from userkb.search.retrieval import RetrievalService


class ScriptedClock:
    """Returns the scripted readings in order, then repeats the last one."""

    def __init__(self, *readings: float) -> None:
        self.readings = list(readings)

    def __call__(self) -> float:
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


def make_turn(content="Show me tech sites", user_id="u1", filter_state=None):
    return ChatTurn(
        user_id=user_id,
        messages=[{"role": "user", "content": content}],
        filter_state=filter_state or {},
    )


def types_of(events):
    return [event.type for event in events]


@pytest.fixture
def recorder(store, embedder):
    return ConversationRecorder(store, embedder, min_reply_chars=50)


def make_orchestrator(completion, **kwargs):
    kwargs.setdefault("stage1", StageSettings("stage1-model", 0.7, 500))
    kwargs.setdefault("stage2", StageSettings("stage2-model", 0.1, 500))
    return ChatOrchestrator(completion, **kwargs)


def test_completed_turn_event_order(recorder, store):
    completion = ScriptedCompletionProvider(["Hello", "", " there"])
    orchestrator = make_orchestrator(completion, recorder=recorder)

    events = list(orchestrator.run_turn(make_turn("hi")))

    assert types_of(events) == ["content", "content", "no_tool", "done"]
    assert [e.content for e in events if isinstance(e, ContentEvent)] == ["Hello", " there"]
    assert events[2].reasoning == "just chatting"
    assert completion.streams[0].closed is True
    assert store.count("u1") == 1


def test_stage_settings_and_prompts_are_forwarded():
    completion = ScriptedCompletionProvider()
    orchestrator = make_orchestrator(completion)

    list(orchestrator.run_turn(make_turn(filter_state={"niche": "tech"})))

    stream_call = completion.stream_calls[0]
    assert stream_call["model"] == "stage1-model"
    assert stream_call["messages"][0]["role"] == "system"
    assert "Current filters: niche=tech" in stream_call["messages"][0]["content"]
    assert stream_call["messages"][-1] == {"role": "user", "content": "Show me tech sites"}

    complete_call = completion.complete_calls[0]
    assert complete_call["model"] == "stage2-model"
    assert complete_call["json_mode"] is True
    assert '"Hello there"' in complete_call["messages"][0]["content"]


def test_tool_execution_yields_tool_result(recorder):
    completion = ScriptedCompletionProvider(
        ["Sure, finding tech sites."],
        decision_json(True, parameters={"niche": "tech", "daMin": 40}, reasoning="wants tech", confidence=0.8),
    )
    orchestrator = make_orchestrator(completion, recorder=recorder)

    events = list(orchestrator.run_turn(make_turn()))

    assert types_of(events) == ["content", "tool_result", "done"]
    payload = events[1].to_dict()
    assert payload["stage"] == 2
    assert payload["toolResult"]["url"] == "/publishers?daMin=40&niche=tech"
    assert payload["toolResult"]["action"] == "filter_applied"
    assert payload["analysis"] == {"reasoning": "wants tech", "confidence": 0.8}


def test_stage1_failure_ends_turn_with_error(recorder, store):
    completion = ScriptedCompletionProvider(["partial"], stream_fail_after=1)
    orchestrator = make_orchestrator(completion, recorder=recorder)

    events = list(orchestrator.run_turn(make_turn()))

    assert types_of(events) == ["content", "error"]
    assert events[1].error == "stage 1 provider down"
    assert completion.complete_calls == []
    assert completion.streams[0].closed is True
    assert store.count("u1") == 0


def test_stage1_connect_failure_yields_only_error():
    completion = ScriptedCompletionProvider()
    completion.stream_chat = MagicMock(side_effect=ProviderUnavailable("no connection"))
    orchestrator = make_orchestrator(completion)

    events = list(orchestrator.run_turn(make_turn()))

    assert events == [ErrorEvent(error="no connection")]


def test_stage2_provider_error_becomes_no_tool(recorder, store):
    completion = ScriptedCompletionProvider(complete_error=ProviderUnavailable("analyzer down"))
    orchestrator = make_orchestrator(completion, recorder=recorder)

    events = list(orchestrator.run_turn(make_turn()))

    assert types_of(events) == ["content", "content", "no_tool", "done"]
    assert events[2].reasoning == "Tool analysis unavailable"
    assert store.count("u1") == 1


def test_malformed_decision_becomes_no_tool():
    completion = ScriptedCompletionProvider(decision="I would apply filters but no JSON here")
    events = list(make_orchestrator(completion).run_turn(make_turn()))

    assert isinstance(events[-2], NoToolEvent)
    assert events[-2].reasoning == "Tool analysis returned an unreadable decision"
    assert isinstance(events[-1], DoneEvent)


def test_invalid_filters_become_tool_error():
    completion = ScriptedCompletionProvider(decision=decision_json(True, parameters={"daMin": 80, "daMax": 10}))
    events = list(make_orchestrator(completion).run_turn(make_turn()))

    assert isinstance(events[-2], ToolErrorEvent)
    assert events[-2].error.startswith("Invalid filters:")
    assert events[-2].to_dict()["stage"] == 2


def test_unknown_tool_becomes_tool_error():
    completion = ScriptedCompletionProvider(decision=decision_json(True, tool_name="bookFlight"))
    events = list(make_orchestrator(completion).run_turn(make_turn()))

    assert events[-2] == ToolErrorEvent(error="Unknown tool 'bookFlight'")


def test_crashing_tool_becomes_tool_error():
    completion = ScriptedCompletionProvider(decision=decision_json(True, parameters={"niche": "tech"}))
    orchestrator = make_orchestrator(completion)
    tool = orchestrator.tools.get("applyFilters")
    tool.execute = MagicMock(side_effect=RuntimeError("boom"))

    events = list(orchestrator.run_turn(make_turn()))

    assert events[-2] == ToolErrorEvent(error="boom")
    assert isinstance(events[-1], DoneEvent)


def test_stage1_timeout_yields_error():
    completion = ScriptedCompletionProvider(["a", "b", "c"])
    # deadline = 0 + 15; first fragment checked at 10, second at 20
    orchestrator = make_orchestrator(completion, turn_timeout=15, clock=ScriptedClock(0, 10, 20))

    events = list(orchestrator.run_turn(make_turn()))

    assert types_of(events) == ["content", "error"]
    assert events[0].content == "a"
    assert "time limit" in events[1].error
    assert completion.complete_calls == []


def test_deadline_before_stage2_skips_analysis_and_persistence(recorder, store):
    completion = ScriptedCompletionProvider(["Hello"])
    orchestrator = make_orchestrator(
        completion, recorder=recorder, turn_timeout=60, clock=ScriptedClock(0, 1, 100)
    )

    events = list(orchestrator.run_turn(make_turn()))

    assert types_of(events) == ["content", "no_tool", "done"]
    assert events[1].reasoning == "Tool analysis skipped: time limit reached"
    assert completion.complete_calls == []
    assert store.count("u1") == 0


def test_closing_stream_early_cancels_turn(recorder, store):
    completion = ScriptedCompletionProvider(["one", "two", "three"])
    orchestrator = make_orchestrator(completion, recorder=recorder)

    events = orchestrator.run_turn(make_turn())
    first = next(events)
    events.close()

    assert first == ContentEvent(content="one")
    assert completion.streams[0].closed is True
    assert completion.streams[0].consumed == 1
    assert completion.complete_calls == []
    assert store.count("u1") == 0


def test_persistence_failure_does_not_break_turn(embedder):
    broken_store = MagicMock()
    broken_store.insert_fact.side_effect = RuntimeError("disk full")
    orchestrator = make_orchestrator(
        ScriptedCompletionProvider(), recorder=ConversationRecorder(broken_store, embedder)
    )

    events = list(orchestrator.run_turn(make_turn()))

    assert isinstance(events[-1], DoneEvent)
    broken_store.insert_fact.assert_called_once()


def test_persisted_turn_records_stage2_outcome(recorder, store):
    completion = ScriptedCompletionProvider(decision=decision_json(True, parameters={"niche": "tech"}))
    orchestrator = make_orchestrator(completion, recorder=recorder)

    list(orchestrator.run_turn(make_turn()))

    turn = store.list_facts("u1", content_type="conversation_turn")[0]
    assert turn.content == "User: Show me tech sites\nAssistant: Hello there"
    assert turn.metadata["stage2_outcome"] == "tool_result"
    assert turn.metadata["message_count"] == 2


def test_retrieved_facts_reach_stage1_prompt(store, embedder):
    store.insert_fact("u1", "My dog is a beagle", "user_fact", embedder.embed("My dog is a beagle"))
    completion = ScriptedCompletionProvider()
    orchestrator = make_orchestrator(completion, retrieval=RetrievalService(store, embedder))

    list(orchestrator.run_turn(make_turn("Any sites for my dog?")))

    system_prompt = completion.stream_calls[0]["messages"][0]["content"]
    assert "Relevant information about this user:\n[1] My dog is a beagle" in system_prompt


def test_retrieval_failure_is_ignored():
    retrieval = MagicMock()
    retrieval.retrieve.side_effect = ProviderUnavailable("embedding down")
    completion = ScriptedCompletionProvider()

    events = list(make_orchestrator(completion, retrieval=retrieval).run_turn(make_turn()))

    assert isinstance(events[-1], DoneEvent)
    assert "Relevant information" not in completion.stream_calls[0]["messages"][0]["content"]


@pytest.mark.parametrize(
    "turn",
    [
        ChatTurn(user_id="", messages=[{"role": "user", "content": "hi"}]),
        ChatTurn(user_id="u1", messages=[]),
        ChatTurn(user_id="u1", messages=[{"role": "robot", "content": "hi"}]),
        ChatTurn(user_id="u1", messages=[{"role": "user", "content": 5}]),
        ChatTurn(user_id="u1", messages=[{"role": "assistant", "content": "hello"}]),
        ChatTurn(user_id="u1", messages=[{"role": "user", "content": "hi"}], filter_state=["niche"]),
    ],
)
def test_invalid_turns_are_rejected_before_streaming(turn):
    completion = ScriptedCompletionProvider()
    with pytest.raises(ValueError):
        make_orchestrator(completion).run_turn(turn)
    assert completion.stream_calls == []


def test_tool_result_event_shape():
    event = ToolResultEvent(tool_result={"success": True}, reasoning="r", confidence=0.5)
    assert event.to_dict() == {
        "type": "tool_result",
        "stage": 2,
        "toolResult": {"success": True},
        "analysis": {"reasoning": "r", "confidence": 0.5},
    }


def test_stage2_prompt_lists_registered_tools():
    completion = ScriptedCompletionProvider()
    list(make_orchestrator(completion).run_turn(make_turn()))

    assert "Available tools: applyFilters" in completion.complete_calls[0]["messages"][0]["content"]


def test_turn_operations_are_timed(store, embedder):
    metrics = OperationMetrics()
    completion = ScriptedCompletionProvider(decision=decision_json(True, parameters={"niche": "tech"}))
    orchestrator = make_orchestrator(
        completion,
        recorder=ConversationRecorder(store, embedder, metrics=metrics),
        retrieval=RetrievalService(store, embedder, metrics=metrics),
        metrics=metrics,
    )

    list(orchestrator.run_turn(make_turn()))

    assert set(metrics.snapshot()) == {"retrieval", "chat_stage1", "chat_stage2", "tool:applyFilters", "persistence"}
    assert all(stats["failures"] == 0 for stats in metrics.snapshot().values())


def test_stage_failures_are_counted():
    metrics = OperationMetrics()
    completion = ScriptedCompletionProvider(complete_error=ProviderUnavailable("analyzer down"))

    list(make_orchestrator(completion, metrics=metrics).run_turn(make_turn()))

    assert metrics.get("chat_stage1").failures == 0
    assert metrics.get("chat_stage2").failures == 1
