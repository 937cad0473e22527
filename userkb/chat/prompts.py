"""Prompt builders for the two chat stages.

Stage 1 writes the conversational reply and never mentions tools. Stage 2
sees the user's request, the finished reply and the current filters, and
answers with a single JSON tool decision.
"""

from __future__ import annotations

import json
from typing import Dict, List, Sequence

from userkb.chat.decision import Stage1Output
from userkb.chat.filters import FilterState, describe_filters

Message = Dict[str, str]

STAGE1_INSTRUCTIONS = """You are a helpful assistant for a publisher marketplace.

Context:
{filters}
{knowledge}
Your role:
- Reply naturally and conversationally to the user.
- If the user wants to find or filter websites, acknowledge what you will look for.
- If the user asks a question, answer it briefly and accurately.
- Never mention tools, parameters or any technical operation.

Keep responses brief and friendly."""

STAGE2_INSTRUCTIONS = """You decide whether a user's request needs the applyFilters tool.

User request:
{user_message}

Assistant reply already sent:
{stage1_reply}

{filters}

Available tools: {tools}

Call applyFilters when the user wants to browse, find or narrow down websites.
Do not call a tool for conceptual questions, explanations or small talk.

Filter extraction rules:
- "quality", "good", "reputable", "trustworthy": daMin 50, drMin 50, spamMax 2
- "high authority", "strong": daMin 60, drMin 60
- "low spam", "clean": spamMax 2
- "cheap", "affordable", "budget", "inexpensive": priceMax 500
- "expensive", "premium", "high-end": priceMin 1000
- "mid-range", "moderate": priceMin 500, priceMax 1500
- "under/below $X": priceMax X; "above/over $X": priceMin X
- a country name: country as a lowercase code (india, us, uk)
- an industry: niche, one of tech, health, finance, business, lifestyle, education
- "popular", "high traffic", "busy": trafficMin 10000; "established traffic": trafficMin 5000

Respond with only this JSON object:
{{"shouldExecuteTool": true or false, "reasoning": "short explanation", "toolName": "applyFilters" or null, "parameters": {{}}, "confidence": 0.0 to 1.0}}"""


def last_user_message(messages: List[Message]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content") or ""
    return ""


def build_stage1_messages(
    messages: List[Message], filter_state: FilterState, knowledge_block: str = ""
) -> List[Message]:
    knowledge = f"\n{knowledge_block}\n" if knowledge_block else ""
    system = STAGE1_INSTRUCTIONS.format(filters=describe_filters(filter_state), knowledge=knowledge)
    return [{"role": "system", "content": system}] + [
        {"role": m["role"], "content": m["content"]} for m in messages
    ]


def build_stage2_messages(
    user_message: str,
    stage1: Stage1Output,
    filter_state: FilterState,
    tool_names: Sequence[str] = ("applyFilters",),
) -> List[Message]:
    filters = "Current filters: " + json.dumps(filter_state) if filter_state else describe_filters(filter_state)
    system = STAGE2_INSTRUCTIONS.format(
        user_message=json.dumps(user_message),
        stage1_reply=json.dumps(stage1.full_text),
        filters=filters,
        tools=", ".join(tool_names) or "none",
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": "Analyze this request and decide on tool execution."},
    ]
