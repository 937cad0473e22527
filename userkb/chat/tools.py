"""Tools the stage-2 analyzer may ask the orchestrator to run."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from userkb.chat.filters import (
    FilterState,
    apply_filter_mode,
    build_publishers_url,
    detect_filter_mode,
    normalize_filters,
    validate_filters,
)
from userkb.errors import ToolExecutionError

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    user_id: str
    user_message: str
    filter_state: FilterState = field(default_factory=dict)


class Tool(ABC):
    name: str = ""

    @abstractmethod
    def execute(self, parameters: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        """Run the tool; raise ``ToolExecutionError`` on invalid input or failure."""


class PublisherFilterTool(Tool):
    """Turns extracted filter parameters into a publisher search.

    The update mode (clear / replace / merge / new) is read from the user's
    own words, then the combined filter state is validated before a URL is
    built for the publishers page.
    """

    name = "applyFilters"

    def execute(self, parameters: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        try:
            new_filters = normalize_filters(parameters)
            current = normalize_filters(context.filter_state)
        except ValueError as exc:
            raise ToolExecutionError(str(exc)) from exc

        mode = detect_filter_mode(context.user_message)
        filters = apply_filter_mode(mode, current, new_filters)

        errors = validate_filters(filters)
        if errors:
            raise ToolExecutionError("Invalid filters: " + "; ".join(errors))

        logger.info("Applying %d filters (mode=%s) for user %s", len(filters), mode, context.user_id)
        if not filters:
            message = "Cleared all filters"
        else:
            message = "Applied filters and navigating to publisher page"
        return {
            "action": "filter_applied",
            "mode": mode,
            "filters": filters,
            "message": message,
            "url": build_publishers_url(filters),
            "success": True,
        }


class ToolRegistry:
    def __init__(self, tools: Optional[Iterable[Tool]] = None) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool must define a name")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolExecutionError(f"Unknown tool '{name}'")
        return tool

    def names(self) -> List[str]:
        return sorted(self._tools)


def default_tool_registry() -> ToolRegistry:
    return ToolRegistry([PublisherFilterTool()])
