"""Prompt rendering for an assembled context.

Background (similar) turns come first, then the recent history, then the new
question. Empty blocks are omitted together with their headers.
"""
from __future__ import annotations

from typing import Iterable, List

from memory.models import AssembledContext, Turn

SIMILAR_HEADER = "## Relevant Context from Past Conversations:"
RECENT_HEADER = "## Recent Conversation:"
QUESTION_HEADER = "## Current Question:"

SYSTEM_PROMPT = (
    "You are a helpful AI assistant. "
    "Use the relevant past context and the recent conversation to keep track of "
    "what the user has already told you. Be concise and helpful in your responses."
)


def _render_turns(turns: Iterable[Turn]) -> List[str]:
    return [f"{turn.role.value}: {turn.content}" for turn in turns]


def build_context_prompt(*, context: AssembledContext, question: str) -> str:
    if context.is_empty:
        return question

    sections: List[str] = []
    if context.similar:
        sections.append("\n".join([SIMILAR_HEADER, *_render_turns(context.similar)]))
    if context.recent:
        sections.append("\n".join([RECENT_HEADER, *_render_turns(context.recent)]))
    sections.append(f"{QUESTION_HEADER}\n{question}")
    return "\n\n".join(sections)
