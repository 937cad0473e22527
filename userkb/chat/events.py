"""Events emitted during a chat turn and their SSE wire format."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict

DONE_SENTINEL = "[DONE]"


@dataclass
class ChatEvent:
    type: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type}


@dataclass
class ContentEvent(ChatEvent):
    content: str = ""
    type: ClassVar[str] = "content"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.content, "stage": 1}


@dataclass
class ToolResultEvent(ChatEvent):
    tool_result: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 0.0
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "stage": 2,
            "toolResult": dict(self.tool_result),
            "analysis": {"reasoning": self.reasoning, "confidence": self.confidence},
        }


@dataclass
class ToolErrorEvent(ChatEvent):
    error: str = ""
    type: ClassVar[str] = "tool_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "stage": 2, "error": self.error}


@dataclass
class NoToolEvent(ChatEvent):
    reasoning: str = ""
    type: ClassVar[str] = "no_tool"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "stage": 2, "reasoning": self.reasoning}


@dataclass
class ErrorEvent(ChatEvent):
    error: str = ""
    type: ClassVar[str] = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "error": self.error}


@dataclass
class DoneEvent(ChatEvent):
    type: ClassVar[str] = "done"


def encode_sse(event: ChatEvent) -> str:
    if isinstance(event, DoneEvent):
        return f"data: {DONE_SENTINEL}\n\n"
    return f"data: {json.dumps(event.to_dict())}\n\n"
