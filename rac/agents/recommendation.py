"""Recommendation Agent — one recommendation per process step that has findings."""

import json

from rac.agents.base import AnalysisServices, StageSpec, compose_prompt, run_stage
from rac.config import stage_options
from rac.models.findings import AnalysisType, RecommendationFinding
from rac.models.process import ProcessNode
from rac.models.schemas import RecommendationOutput
from rac.state import AnalysisState, ProcessedKey, Step
from rac.utils.findings import build_recommendation_finding

STAGE = StageSpec(
    kind=AnalysisType.RECOMMENDATION,
    label="Recommendation",
    ready_steps=frozenset({Step.CONTROL_EVALUATION_COMPLETE, Step.RECOMMENDATION}),
    in_progress=Step.RECOMMENDATION,
    complete=Step.RECOMMENDATION_COMPLETE,
    findings_field="recommendation_findings",
)

SYSTEM_PROMPT = """\
You are the Recommendation agent in a process compliance review.

Your job is to read the compliance gap, risk, and control findings for ONE \
business process step and propose a single specific, actionable \
recommendation.

You MUST respond with a single JSON object with these fields:
{
  "recommendation": "the recommendation",
  "rationale": "why it addresses the findings",
  "benefitDescription": "what implementing it gains",
  "implementationComplexity": "low | medium | high",
  "priority": "low | medium | high",
  "confidence": number between 0 and 1,
  "reasoning": "the evidence behind the recommendation and confidence"
}

Rules:
- Be specific; name the step, control, or requirement concerned.
- Respond ONLY with the JSON object. No markdown fences, no commentary.
"""


def _build_user_prompt(findings: list, node: ProcessNode) -> str:
    return "\n".join([
        "Generate a recommendation based on the following findings.",
        "\n## Findings",
        json.dumps([f.model_dump(mode="json") for f in findings], indent=2),
        "\n## Process Step",
        json.dumps(node.model_dump(mode="json"), indent=2),
        "\nReturn your recommendation in the required JSON format.",
    ])


def group_findings_by_node(state: AnalysisState) -> list[tuple[ProcessNode, list]]:
    """Findings for each step in model order; control findings follow their owning step."""
    model = state["process_model"]
    if model is None:
        return []

    groups = []
    for node in model.nodes:
        control_ids = {c.id for c in node.data.controls}
        findings = [
            *(f for f in state["compliance_gap_findings"] if f.process_node_id == node.id),
            *(f for f in state["risk_findings"] if f.process_node_id == node.id),
            *(
                f for f in state["control_findings"]
                if f.process_node_id == node.id or f.control_id in control_ids
            ),
        ]
        if findings:
            groups.append((node, findings))
    return groups


def _select(state: AnalysisState):
    processed = state["processed_entity_ids"]
    pending = []
    for node, findings in group_findings_by_node(state):
        key = ProcessedKey(STAGE.kind.value, ",".join(sorted(f.id for f in findings)))
        if key not in processed:
            pending.append((key, (node, findings)))
    if not pending:
        return None
    # max() keeps the first of equal counts, i.e. model order.
    return max(pending, key=lambda item: len(item[1][1]))


def recommendation_node(state: AnalysisState, services: AnalysisServices) -> AnalysisState:
    """Recommendation node for the LangGraph StateGraph."""

    def _process(state: AnalysisState, entity: tuple[ProcessNode, list]) -> RecommendationFinding:
        node, findings = entity
        prompt = compose_prompt(SYSTEM_PROMPT, _build_user_prompt(findings, node))
        output = services.caller.call_structured(
            prompt, RecommendationOutput, stage_options(STAGE.kind.value)
        )
        return build_recommendation_finding(node, output, findings)

    return run_stage(state, STAGE, _select, _process)
