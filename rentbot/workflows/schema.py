"""Pydantic models for step-by-step conversation workflows.

A workflow is an ordered table of question states.  Each state sends a
prompt, parses one reply with a named parser, writes the value to a
field, and follows its ``next`` transition.  ``back`` points at the
predecessor.  Targets use the same grammar as the loader:

  "state_id", "state_id:override message", "exit", "exit:message"
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class DraftStepDef(BaseModel):
    """One question in a conversation workflow."""

    id: str
    prompt: str = ""                       # Sent on entry, supports {{suburb_menu}}
    field: str = ""                        # Draft / session field written on success
    parser: str = "text"                   # Key into rentbot.parsers.PARSERS
    error: str = ""                        # Re-prompt when the parser rejects a reply
    transitions: dict[str, str] = {}       # "next" / "back" -> target


class DraftWorkflowDef(BaseModel):
    """A complete conversation workflow definition."""

    id: str
    kind: Literal["listing", "search"]
    initial_state: str = ""
    writes_to: Literal["draft", "session"] = "draft"
    cancel_phrases: list[str] = ["CANCEL"]
    back_phrases: list[str] = ["BACK"]
    cancel_message: str = ""
    exit_message: str = ""
    states: dict[str, DraftStepDef] = {}
