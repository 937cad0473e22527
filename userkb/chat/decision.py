from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from userkb.errors import MalformedStructuredOutput

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class Stage1Output:
    """The complete conversational reply, handed from stage 1 to stage 2."""

    full_text: str


@dataclass
class ToolDecision:
    should_execute_tool: bool
    tool_name: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 0.0

    @classmethod
    def no_tool(cls, reasoning: str) -> "ToolDecision":
        return cls(should_execute_tool=False, reasoning=reasoning)


def _extract_json_object(raw: str) -> Dict[str, Any]:
    text = (raw or "").strip()
    if not text:
        raise MalformedStructuredOutput("Empty analyzer response", raw)

    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _OBJECT_PATTERN.search(text)
        if not match:
            raise MalformedStructuredOutput("No JSON object in analyzer response", raw)
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise MalformedStructuredOutput(f"Invalid JSON in analyzer response: {exc}", raw) from exc

    if not isinstance(data, dict):
        raise MalformedStructuredOutput("Analyzer response is not a JSON object", raw)
    return data


def _coerce_flag(value: Any, raw: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise MalformedStructuredOutput("'shouldExecuteTool' must be a boolean", raw)


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return max(0.0, min(1.0, confidence))


def parse_tool_decision(raw: str) -> ToolDecision:
    """Parse the stage-2 analyzer output.

    Accepts bare JSON, JSON inside markdown fences, or JSON surrounded by
    prose. Raises ``MalformedStructuredOutput`` when no usable decision can
    be recovered; callers treat that as "no tool".
    """
    data = _extract_json_object(raw)

    if "shouldExecuteTool" not in data:
        raise MalformedStructuredOutput("Missing 'shouldExecuteTool'", raw)
    should_execute = _coerce_flag(data["shouldExecuteTool"], raw)

    tool_name = data.get("toolName")
    if tool_name is not None and not isinstance(tool_name, str):
        raise MalformedStructuredOutput("'toolName' must be a string or null", raw)
    tool_name = (tool_name or "").strip() or None
    if should_execute and not tool_name:
        raise MalformedStructuredOutput("Tool execution requested without 'toolName'", raw)

    parameters = data.get("parameters")
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise MalformedStructuredOutput("'parameters' must be an object", raw)

    reasoning = data.get("reasoning")
    return ToolDecision(
        should_execute_tool=should_execute,
        tool_name=tool_name if should_execute else None,
        parameters=parameters if should_execute else {},
        reasoning=reasoning if isinstance(reasoning, str) else "",
        confidence=_coerce_confidence(data.get("confidence")),
    )
