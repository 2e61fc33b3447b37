"""Conversation workflows: the listing draft and the search wizard.

The canonical definitions live in ``definitions/*.jsonl``.
"""

from __future__ import annotations

from pathlib import Path

from rentbot.workflows.loader import WorkflowError, load_workflow_jsonl
from rentbot.workflows.schema import DraftStepDef, DraftWorkflowDef

DEFINITIONS_DIR = Path(__file__).resolve().parent / "definitions"

LISTING_WORKFLOW: DraftWorkflowDef = load_workflow_jsonl(DEFINITIONS_DIR / "listing_draft.jsonl")
SEARCH_WORKFLOW: DraftWorkflowDef = load_workflow_jsonl(DEFINITIONS_DIR / "search_wizard.jsonl")

WORKFLOWS: dict[str, DraftWorkflowDef] = {
    LISTING_WORKFLOW.kind: LISTING_WORKFLOW,
    SEARCH_WORKFLOW.kind: SEARCH_WORKFLOW,
}

__all__ = [
    "DraftStepDef",
    "DraftWorkflowDef",
    "LISTING_WORKFLOW",
    "SEARCH_WORKFLOW",
    "WORKFLOWS",
    "WorkflowError",
    "load_workflow_jsonl",
]
