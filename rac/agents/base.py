"""Shared shape of the four per-entity stage agents.

Each agent call either processes exactly one entity, reports its stage
complete, or passes the state through untouched when it is not its turn.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from rac.context.providers import DocumentProvider, ProcessModelProvider
from rac.context.retrieval import RetrievalHelper
from rac.llm.caller import StructuredCaller
from rac.models.findings import AnalysisType
from rac.state import AnalysisState, ProcessedKey, Step

logger = logging.getLogger(__name__)


@dataclass
class AnalysisServices:
    """Collaborators handed to every node."""

    caller: StructuredCaller
    retriever: RetrievalHelper
    process_models: ProcessModelProvider
    documents: DocumentProvider
    excerpt_length: int = 300


@dataclass(frozen=True)
class StageSpec:
    kind: AnalysisType
    label: str  # Human name used in error messages.
    ready_steps: frozenset[Step]  # Steps on which the agent may run.
    in_progress: Step
    complete: Step
    findings_field: str


Selection = tuple[ProcessedKey, Any]


def compose_prompt(system_prompt: str, user_prompt: str) -> str:
    """The oracle takes a single prompt; the system prompt leads."""
    return f"{system_prompt.strip()}\n\n{user_prompt.strip()}"


def run_stage(
    state: AnalysisState,
    spec: StageSpec,
    select: Callable[[AnalysisState], Selection | None],
    process: Callable[[AnalysisState, Any], Any],
) -> AnalysisState:
    """Advance one stage by at most one entity and return the successor state.

    Selection is a linear scan over the stage's entities on every call, so a
    full stage is quadratic in entity count; fine for tens to low hundreds
    of entities.
    """
    if state["current_step"] not in spec.ready_steps:
        return state

    if spec.kind not in state["parameters"].analysis_kinds:
        logger.info("%s not requested; skipping stage", spec.label)
        return {**state, "current_step": spec.complete}

    selection = select(state)
    if selection is None:
        logger.info("%s complete", spec.label)
        return {**state, "current_step": spec.complete}

    key, entity = selection
    processed = state["processed_entity_ids"] | {key}
    logger.info("%s: processing %s", spec.label, key.entity_id)

    try:
        finding = process(state, entity)
    except Exception as e:
        logger.warning("%s failed for %s: %s", spec.label, key.entity_id, e)
        return {
            **state,
            "errors": state["errors"] + [f"{spec.label} error ({key.entity_id}): {e}"],
            "processed_entity_ids": processed,
            "status": "in_progress",
            "current_step": spec.in_progress,
        }

    return {
        **state,
        spec.findings_field: state[spec.findings_field] + [finding],
        "processed_entity_ids": processed,
        "status": "in_progress",
        "current_step": spec.in_progress,
    }
