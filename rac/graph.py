"""LangGraph StateGraph definition for the analysis workflow.

The router is a pure function of ``current_step``. Every node returns a full
successor state and runs inside a progress guard, so a node that stops moving
the run forward fails it instead of looping.
"""

import logging
from enum import Enum
from functools import partial
from typing import Callable, Iterator

from langgraph.graph import END, START, StateGraph

from rac.agents.base import AnalysisServices
from rac.agents.compliance import compliance_gap_node
from rac.agents.control import control_evaluation_node
from rac.agents.recommendation import recommendation_node
from rac.agents.risk import risk_assessment_node
from rac.agents.summary import summary_node
from rac.config import get_config
from rac.errors import ContextLoadError, EngineStallError
from rac.models.process import Document, DocumentChunk
from rac.state import AnalysisState, Step, made_progress

logger = logging.getLogger(__name__)


class Action(str, Enum):
    PREPARE = "prepare"
    COMPLIANCE_GAP = "compliance_gap_analysis"
    RISK_ASSESSMENT = "risk_assessment"
    CONTROL_EVALUATION = "control_evaluation"
    RECOMMENDATION = "recommendation"
    SUMMARY = "summary"
    END = "end"


ROUTES: dict[Step, Action] = {
    Step.INITIALIZING: Action.PREPARE,
    Step.COMPLIANCE_GAP: Action.COMPLIANCE_GAP,
    Step.COMPLIANCE_GAP_COMPLETE: Action.RISK_ASSESSMENT,
    Step.RISK_ASSESSMENT: Action.RISK_ASSESSMENT,
    Step.RISK_ASSESSMENT_COMPLETE: Action.CONTROL_EVALUATION,
    Step.CONTROL_EVALUATION: Action.CONTROL_EVALUATION,
    Step.CONTROL_EVALUATION_COMPLETE: Action.RECOMMENDATION,
    Step.RECOMMENDATION: Action.RECOMMENDATION,
    Step.RECOMMENDATION_COMPLETE: Action.SUMMARY,
    Step.COMPLETED: Action.END,
    Step.FAILED: Action.END,
}

_unrouted = set(Step) - ROUTES.keys()
if _unrouted:
    raise RuntimeError(f"No route for steps: {sorted(s.value for s in _unrouted)}")


def route_next_step(step: Step | str) -> Action:
    """Map a step token to the next action; anything unrecognized ends the run."""
    try:
        return ROUTES[Step(step)]
    except ValueError:
        logger.warning("Unknown step %r; ending workflow", step)
        return Action.END


def _load_document(provider, document_id: str) -> Document:
    chunks: list[DocumentChunk] = sorted(
        provider.load_document_chunks(document_id), key=lambda c: c.chunk_index
    )
    if not chunks:
        raise ContextLoadError(f"Document {document_id} not found or has no chunks")
    return Document(
        id=document_id,
        text=" ".join(c.text for c in chunks),
        metadata={"title": chunks[0].title, "category": chunks[0].category},
    )


def prepare_node(state: AnalysisState, services: AnalysisServices) -> AnalysisState:
    """Load the process model and reassemble every reference document."""
    if state["current_step"] != Step.INITIALIZING:
        return state

    params = state["parameters"]
    try:
        model = services.process_models.load_process_model(params.process_model_id)
        documents = [_load_document(services.documents, doc_id) for doc_id in params.document_ids]
    except Exception as e:
        logger.error("Preparing analysis failed: %s", e)
        return {
            **state,
            "errors": state["errors"] + [f"Error preparing analysis: {e}"],
            "status": "failed",
            "current_step": Step.FAILED,
        }

    logger.info(
        "Loaded process model %s (%d nodes) and %d documents",
        model.id, len(model.nodes), len(documents),
    )
    return {
        **state,
        "process_model": model,
        "documents": documents,
        "status": "in_progress",
        "current_step": Step.COMPLIANCE_GAP,
    }


NodeFn = Callable[[AnalysisState], AnalysisState]


def _guarded(node_fn: NodeFn) -> NodeFn:
    """Fail the run once a node has made no progress too many times in a row."""

    def _run(state: AnalysisState) -> AnalysisState:
        after = node_fn(state)
        if made_progress(state, after):
            return {**after, "stalled_iterations": 0}

        stalled = state["stalled_iterations"] + 1
        if stalled < get_config().get("max_stalled_iterations", 2):
            return {**after, "stalled_iterations": stalled}

        step = after["current_step"]
        error = EngineStallError(getattr(step, "value", step), stalled)
        logger.error("%s", error)
        return {
            **after,
            "errors": after["errors"] + [str(error)],
            "status": "failed",
            "current_step": Step.FAILED,
            "stalled_iterations": stalled,
        }

    return _run


def _node_functions(services: AnalysisServices) -> dict[Action, NodeFn]:
    return {
        Action.PREPARE: _guarded(partial(prepare_node, services=services)),
        Action.COMPLIANCE_GAP: _guarded(partial(compliance_gap_node, services=services)),
        Action.RISK_ASSESSMENT: _guarded(partial(risk_assessment_node, services=services)),
        Action.CONTROL_EVALUATION: _guarded(partial(control_evaluation_node, services=services)),
        Action.RECOMMENDATION: _guarded(partial(recommendation_node, services=services)),
        Action.SUMMARY: _guarded(partial(summary_node, services=services)),
    }


def _node_name(action: Action) -> str:
    # Graph node names may not collide with state keys ("summary").
    return f"{action.value}_node"


def _route(state: AnalysisState) -> str:
    return route_next_step(state["current_step"]).value


# --- Build the graph ---

def build_graph(services: AnalysisServices):
    """Compile the workflow with ``services`` bound into every node."""
    workflow = StateGraph(AnalysisState)

    path_map = {Action.END.value: END}
    for action, node_fn in _node_functions(services).items():
        workflow.add_node(_node_name(action), node_fn)
        path_map[action.value] = _node_name(action)

    workflow.add_conditional_edges(START, _route, path_map)
    for action in Action:
        if action is not Action.END:
            workflow.add_conditional_edges(_node_name(action), _route, path_map)

    return workflow.compile()


def run_workflow(state: AnalysisState, services: AnalysisServices) -> AnalysisState:
    """Run from ``state`` until the router says ``end``."""
    graph = build_graph(services)
    limit = get_config().get("recursion_limit", 10000)
    return graph.invoke(state, {"recursion_limit": limit})


# --- Step-execution helpers for the manual loop ---

def run_single_step(
    state: AnalysisState, action: Action | str, services: AnalysisServices
) -> AnalysisState:
    """Run one node and return the successor state.

    Used by the CLI and tests to drive the workflow one step at a time.
    """
    action = Action(action)
    if action is Action.END:
        return state
    return _node_functions(services)[action](state)


def iter_workflow(state: AnalysisState, services: AnalysisServices) -> Iterator[AnalysisState]:
    """Yield the state after every step until the router says ``end``."""
    node_fns = _node_functions(services)
    action = route_next_step(state["current_step"])
    while action is not Action.END:
        state = node_fns[action](state)
        yield state
        action = route_next_step(state["current_step"])
