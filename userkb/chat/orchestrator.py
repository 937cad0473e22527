"""Two-stage chat turn: stream a reply, then decide on a tool call.

Stage 1 streams the conversational reply to the caller fragment by
fragment. Stage 2 reads the finished reply (``Stage1Output``) and asks a
second model for a structured tool decision. The turn ends with the tool
outcome, persistence of the turn, and a done sentinel.

Event order for a completed turn: ``content*``, exactly one of
``tool_result`` / ``tool_error`` / ``no_tool``, then ``done``. A failed
turn yields ``content*`` followed by a single ``error`` and nothing else.
Closing the generator early stops the stage-1 stream and skips stage 2 and
persistence.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from userkb.chat.completion import CompletionProvider
from userkb.chat.decision import Stage1Output, ToolDecision, parse_tool_decision
from userkb.chat.events import (
    ChatEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    NoToolEvent,
    ToolErrorEvent,
    ToolResultEvent,
)
from userkb.chat.filters import FilterState
from userkb.chat.persistence import ConversationRecorder
from userkb.chat.prompts import build_stage1_messages, build_stage2_messages, last_user_message
from userkb.chat.tools import ToolContext, ToolRegistry, default_tool_registry
from userkb.config import (
    CHAT_STAGE1_MAX_TOKENS,
    CHAT_STAGE1_MODEL,
    CHAT_STAGE1_TEMPERATURE,
    CHAT_STAGE2_MAX_TOKENS,
    CHAT_STAGE2_MODEL,
    CHAT_STAGE2_TEMPERATURE,
    CHAT_TURN_TIMEOUT_SECONDS,
)
from userkb.errors import MalformedStructuredOutput, ToolExecutionError, TurnTimeout
from userkb.metrics import OperationMetrics, operation_metrics
from userkb.search.retrieval import RetrievalService, format_context_for_prompt

logger = logging.getLogger(__name__)

VALID_ROLES = {"user", "assistant", "system"}


@dataclass
class ChatTurn:
    user_id: str
    messages: List[Dict[str, str]]
    filter_state: FilterState = field(default_factory=dict)
    # Absolute deadline on the orchestrator's clock; None means "now + turn timeout".
    deadline: Optional[float] = None


@dataclass
class StageSettings:
    model: str
    temperature: float
    max_tokens: int


def validate_turn(turn: ChatTurn) -> None:
    if not isinstance(turn.user_id, str) or not turn.user_id.strip():
        raise ValueError("'userId' is required")
    if not isinstance(turn.messages, list) or not turn.messages:
        raise ValueError("'messages' must be a non-empty list")
    for message in turn.messages:
        if not isinstance(message, dict):
            raise ValueError("Each message must be an object")
        if message.get("role") not in VALID_ROLES:
            raise ValueError(f"Invalid message role: {message.get('role')!r}")
        if not isinstance(message.get("content"), str):
            raise ValueError("Each message must have string 'content'")
    if not last_user_message(turn.messages).strip():
        raise ValueError("A non-empty user message is required")
    if not isinstance(turn.filter_state, dict):
        raise ValueError("'currentFilterState' must be an object")


class ChatOrchestrator:
    def __init__(
        self,
        completion: CompletionProvider,
        *,
        tools: Optional[ToolRegistry] = None,
        recorder: Optional[ConversationRecorder] = None,
        retrieval: Optional[RetrievalService] = None,
        stage1: Optional[StageSettings] = None,
        stage2: Optional[StageSettings] = None,
        turn_timeout: float = CHAT_TURN_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[OperationMetrics] = None,
    ) -> None:
        self.completion = completion
        self.tools = tools or default_tool_registry()
        self.recorder = recorder
        self.retrieval = retrieval
        self.stage1 = stage1 or StageSettings(CHAT_STAGE1_MODEL, CHAT_STAGE1_TEMPERATURE, CHAT_STAGE1_MAX_TOKENS)
        self.stage2 = stage2 or StageSettings(CHAT_STAGE2_MODEL, CHAT_STAGE2_TEMPERATURE, CHAT_STAGE2_MAX_TOKENS)
        self.turn_timeout = turn_timeout
        self.clock = clock
        self.metrics = metrics or operation_metrics

    def run_turn(self, turn: ChatTurn) -> Iterator[ChatEvent]:
        """Validate the turn eagerly, then return its event generator.

        Raises:
            ValueError: if the turn is malformed (nothing has been streamed yet)
        """
        validate_turn(turn)
        deadline = turn.deadline if turn.deadline is not None else self.clock() + self.turn_timeout
        return self._run(turn, deadline)

    def _expired(self, deadline: float) -> bool:
        return self.clock() > deadline

    def _check_deadline(self, deadline: float) -> None:
        if self._expired(deadline):
            raise TurnTimeout("Chat turn exceeded its time limit")

    def _knowledge_block(self, user_id: str, user_message: str) -> str:
        if self.retrieval is None:
            return ""
        try:
            result = self.retrieval.retrieve(user_id, user_message)
        except Exception:
            logger.exception("Context retrieval failed for user %s; continuing without it", user_id)
            return ""
        return format_context_for_prompt(result, self.retrieval.store.ranking.confidence_gate)

    def _run(self, turn: ChatTurn, deadline: float) -> Iterator[ChatEvent]:
        user_message = last_user_message(turn.messages)
        knowledge_block = self._knowledge_block(turn.user_id, user_message)
        stage1_messages = build_stage1_messages(turn.messages, turn.filter_state, knowledge_block)

        logger.info("Stage 1 started for user %s", turn.user_id)
        fragments: List[str] = []
        stream: Optional[Iterator[str]] = None
        try:
            with self.metrics.track("chat_stage1"):
                stream = self.completion.stream_chat(
                    stage1_messages,
                    model=self.stage1.model,
                    temperature=self.stage1.temperature,
                    max_tokens=self.stage1.max_tokens,
                )
                for fragment in stream:
                    self._check_deadline(deadline)
                    if not fragment:
                        continue
                    fragments.append(fragment)
                    yield ContentEvent(content=fragment)
        except Exception as exc:
            logger.exception("Stage 1 failed for user %s", turn.user_id)
            yield ErrorEvent(error=str(exc) or exc.__class__.__name__)
            return
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        stage1 = Stage1Output(full_text="".join(fragments))
        logger.info("Stage 1 complete for user %s (%d chars)", turn.user_id, len(stage1.full_text))

        outcome = self._run_stage2(turn, user_message, stage1, deadline)
        yield outcome

        if self.recorder is not None:
            if self._expired(deadline):
                logger.warning("Turn deadline exceeded for user %s; not persisting", turn.user_id)
            else:
                self.recorder.record_turn(
                    turn.user_id,
                    user_message,
                    stage1.full_text,
                    {"stage2_outcome": outcome.type, "message_count": len(turn.messages) + 1},
                )

        yield DoneEvent()

    def _decide(self, user_message: str, stage1: Stage1Output, filter_state: FilterState) -> ToolDecision:
        raw = self.completion.complete(
            build_stage2_messages(user_message, stage1, filter_state, self.tools.names()),
            model=self.stage2.model,
            temperature=self.stage2.temperature,
            max_tokens=self.stage2.max_tokens,
            json_mode=True,
        )
        return parse_tool_decision(raw)

    def _run_stage2(
        self,
        turn: ChatTurn,
        user_message: str,
        stage1: Stage1Output,
        deadline: float,
    ) -> ChatEvent:
        try:
            self._check_deadline(deadline)
            with self.metrics.track("chat_stage2"):
                decision = self._decide(user_message, stage1, turn.filter_state)
        except MalformedStructuredOutput as exc:
            logger.warning("Stage 2 returned malformed output for user %s: %s", turn.user_id, exc)
            decision = ToolDecision.no_tool("Tool analysis returned an unreadable decision")
        except TurnTimeout:
            logger.warning("Turn deadline reached before stage 2 for user %s", turn.user_id)
            decision = ToolDecision.no_tool("Tool analysis skipped: time limit reached")
        except Exception as exc:
            logger.warning("Stage 2 unavailable for user %s: %s", turn.user_id, exc)
            decision = ToolDecision.no_tool("Tool analysis unavailable")

        logger.info(
            "Stage 2 decision for user %s: execute=%s tool=%s confidence=%.2f",
            turn.user_id,
            decision.should_execute_tool,
            decision.tool_name,
            decision.confidence,
        )
        if not decision.should_execute_tool:
            return NoToolEvent(reasoning=decision.reasoning)

        context = ToolContext(
            user_id=turn.user_id,
            user_message=user_message,
            filter_state=turn.filter_state,
        )
        try:
            self._check_deadline(deadline)
            tool = self.tools.get(decision.tool_name)
            with self.metrics.track(f"tool:{tool.name}"):
                result = tool.execute(decision.parameters, context)
        except (ToolExecutionError, TurnTimeout) as exc:
            logger.warning("Tool %s failed for user %s: %s", decision.tool_name, turn.user_id, exc)
            return ToolErrorEvent(error=str(exc))
        except Exception as exc:
            logger.exception("Tool %s crashed for user %s", decision.tool_name, turn.user_id)
            return ToolErrorEvent(error=str(exc) or exc.__class__.__name__)

        return ToolResultEvent(
            tool_result=result,
            reasoning=decision.reasoning,
            confidence=decision.confidence,
        )
