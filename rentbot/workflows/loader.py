"""Load JSONL workflow definitions into DraftWorkflowDef objects."""

from __future__ import annotations

import json
from pathlib import Path

from rentbot.models import SearchSession
from rentbot.parsers import PARSER_EXTRA_FIELDS, PARSERS
from rentbot.workflows.schema import DraftStepDef, DraftWorkflowDef


class WorkflowError(ValueError):
    """A workflow file is malformed or references something undefined."""


def load_workflow_jsonl(path: str | Path) -> DraftWorkflowDef:
    """Load a single workflow from a JSONL file.

    The JSONL file contains exactly one JSON object (the workflow).
    States are nested inside the top-level ``states`` dict.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8").strip()

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise WorkflowError(f"{path.name}: invalid JSON: {exc}") from exc
        workflow = _parse_workflow(data)
        validate_workflow(workflow)
        return workflow

    raise WorkflowError(f"No workflow found in {path}")


def split_target(target: str) -> tuple[str, str]:
    """Parse a transition target string.

    Returns (state_id, message).
    - "stateId" → ("stateId", "")
    - "stateId:override msg" → ("stateId", "override msg")
    - "exit" → ("", "")
    - "exit:goodbye msg" → ("", "goodbye msg")
    """
    if not target:
        return "", ""
    if target == "exit" or target.startswith("exit:"):
        _, _, msg = target.partition(":")
        return "", msg
    state_id, _, msg = target.partition(":")
    return state_id, msg


def validate_workflow(workflow: DraftWorkflowDef) -> None:
    """Check parser names, transition targets and the initial state.

    Raises:
        WorkflowError: on the first problem found.
    """
    if workflow.initial_state not in workflow.states:
        raise WorkflowError(
            f"{workflow.id}: initial_state {workflow.initial_state!r} is not defined"
        )
    for state in workflow.states.values():
        if state.parser not in PARSERS:
            raise WorkflowError(f"{workflow.id}.{state.id}: unknown parser {state.parser!r}")
        if not state.field:
            raise WorkflowError(f"{workflow.id}.{state.id}: no field to write")
        if "next" not in state.transitions:
            raise WorkflowError(f"{workflow.id}.{state.id}: missing 'next' transition")
        if workflow.writes_to == "session":
            _check_session_fields(workflow, state)
        for name, target in state.transitions.items():
            state_id, _ = split_target(target)
            if name == "back" and not state_id:
                raise WorkflowError(f"{workflow.id}.{state.id}: 'back' cannot exit")
            if state_id and state_id not in workflow.states:
                raise WorkflowError(
                    f"{workflow.id}.{state.id}: transition {name!r} targets undefined state {state_id!r}"
                )


def _parse_workflow(data: dict) -> DraftWorkflowDef:
    """Parse a raw dict into a DraftWorkflowDef."""
    raw_states = data.get("states", {})
    states: dict[str, DraftStepDef] = {}
    try:
        for state_id, state_data in raw_states.items():
            if not isinstance(state_data, dict):
                raise WorkflowError(f"State {state_id!r} must be an object")
            state_data.setdefault("id", state_id)
            states[state_id] = DraftStepDef(**state_data)

        data["states"] = states
        return DraftWorkflowDef(**data)
    except WorkflowError:
        raise
    except ValueError as exc:
        # pydantic's ValidationError is a ValueError
        raise WorkflowError(str(exc)) from exc


def _check_session_fields(workflow: DraftWorkflowDef, state: DraftStepDef) -> None:
    """Values kept on the session must have a field there to land in."""
    if workflow.kind != "search":
        raise WorkflowError(f"{workflow.id}: only search workflows can write to the session")
    known = SearchSession.model_fields
    for name in (state.field, *PARSER_EXTRA_FIELDS.get(state.parser, ())):
        if name not in known:
            raise WorkflowError(
                f"{workflow.id}.{state.id}: session has no field {name!r} for parser {state.parser!r}"
            )
