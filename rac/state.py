"""Analysis state — single source of truth passed through the graph.

Every node returns a complete successor (``{**state, ...}``); nothing is
mutated in place, so a failed step leaves the previous state intact.
"""

from enum import Enum
from typing import Literal, NamedTuple, TypedDict

from rac.models.findings import (
    AnalysisParameters,
    ComplianceGapFinding,
    ControlEvaluationFinding,
    Finding,
    RecommendationFinding,
    RiskAssessmentFinding,
)
from rac.models.process import Document, ProcessModel


class Step(str, Enum):
    """Every value ``current_step`` may take."""

    INITIALIZING = "initializing"
    COMPLIANCE_GAP = "compliance_gap_analysis"
    COMPLIANCE_GAP_COMPLETE = "compliance_gap_analysis_complete"
    RISK_ASSESSMENT = "risk_assessment"
    RISK_ASSESSMENT_COMPLETE = "risk_assessment_complete"
    CONTROL_EVALUATION = "control_evaluation"
    CONTROL_EVALUATION_COMPLETE = "control_evaluation_complete"
    RECOMMENDATION = "recommendation"
    RECOMMENDATION_COMPLETE = "recommendation_complete"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessedKey(NamedTuple):
    """Marks one entity as done for one stage."""

    stage: str
    entity_id: str


RunStatus = Literal["initializing", "in_progress", "completed", "failed"]


class AnalysisState(TypedDict):
    parameters: AnalysisParameters  # Immutable run configuration.
    process_model: ProcessModel | None  # Loaded by the prepare step.
    documents: list[Document]
    compliance_gap_findings: list[ComplianceGapFinding]
    risk_findings: list[RiskAssessmentFinding]
    control_findings: list[ControlEvaluationFinding]
    recommendation_findings: list[RecommendationFinding]
    processed_entity_ids: frozenset[ProcessedKey]  # Only grows within a run.
    status: RunStatus
    current_step: Step
    errors: list[str]
    summary: str
    stalled_iterations: int  # Consecutive engine iterations without progress.


def create_initial_state(parameters: AnalysisParameters) -> AnalysisState:
    return {
        "parameters": parameters,
        "process_model": None,
        "documents": [],
        "compliance_gap_findings": [],
        "risk_findings": [],
        "control_findings": [],
        "recommendation_findings": [],
        "processed_entity_ids": frozenset(),
        "status": "initializing",
        "current_step": Step.INITIALIZING,
        "errors": [],
        "summary": "",
        "stalled_iterations": 0,
    }


def all_findings(state: AnalysisState) -> list[Finding]:
    """Every finding in stage order."""
    return [
        *state["compliance_gap_findings"],
        *state["risk_findings"],
        *state["control_findings"],
        *state["recommendation_findings"],
    ]


def made_progress(before: AnalysisState, after: AnalysisState) -> bool:
    """True if a step added a finding, marked an entity, or moved the run on."""
    return (
        len(all_findings(after)) > len(all_findings(before))
        or len(after["processed_entity_ids"]) > len(before["processed_entity_ids"])
        or after["current_step"] != before["current_step"]
        or after["status"] != before["status"]
    )
