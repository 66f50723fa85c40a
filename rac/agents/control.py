"""Control Evaluation Agent — rates each control's design and operation.

The overall effectiveness on the finding is derived locally from the two
sub-dimensions and the control's implementation; the model's own overall
rating is only advisory.
"""

import json

from rac.agents.base import AnalysisServices, StageSpec, compose_prompt, run_stage
from rac.config import stage_options
from rac.models.findings import AnalysisType, ControlEffectiveness, ControlEvaluationFinding
from rac.models.process import Control, ProcessNode
from rac.models.schemas import ControlEvaluationOutput
from rac.state import AnalysisState, ProcessedKey, Step
from rac.utils.findings import build_control_finding

STAGE = StageSpec(
    kind=AnalysisType.CONTROL_EVALUATION,
    label="Control evaluation",
    ready_steps=frozenset({Step.RISK_ASSESSMENT_COMPLETE, Step.CONTROL_EVALUATION}),
    in_progress=Step.CONTROL_EVALUATION,
    complete=Step.CONTROL_EVALUATION_COMPLETE,
    findings_field="control_findings",
)

CRITERIA = """\
- Design: is the control designed to address the intended risk?
- Implementation: is it implemented as designed?
- Consistency: is it applied consistently?
- Documentation: is it documented?
- Monitoring: is it tested or monitored regularly?
- Automation: is it automated or manual? Automated controls are generally more reliable."""

SYSTEM_PROMPT = f"""\
You are the Control Evaluation agent in a process compliance review.

Your job is to evaluate ONE control within a business process: judge its \
design and operating effectiveness, list concrete issues, and suggest \
actionable improvements.

Overall effectiveness levels:
- {ControlEffectiveness.EFFECTIVE.value}: well designed and implemented; risk reduced to an acceptable level
- {ControlEffectiveness.PARTIALLY_EFFECTIVE.value}: some design or implementation issues
- {ControlEffectiveness.INEFFECTIVE.value}: significant issues; fails to mitigate the risk
- {ControlEffectiveness.NOT_IMPLEMENTED.value}: not implemented or not operational

Evaluation criteria:
{CRITERIA}

You MUST respond with a single JSON object with these fields:
{{
  "controlDescription": "the control being evaluated",
  "effectiveness": "one overall effectiveness level",
  "designEffectiveness": "effective | partially effective | ineffective",
  "operatingEffectiveness": "effective | partially effective | ineffective",
  "issues": ["specific issues, if any"],
  "improvementRecommendations": ["specific, actionable improvements"],
  "mitigatedRisks": ["risks this control is meant to mitigate"],
  "confidence": number between 0 and 1,
  "reasoning": "the evidence behind the evaluation and confidence"
}}

Rules:
- Rely only on the information provided.
- Respond ONLY with the JSON object. No markdown fences, no commentary.
"""


def _build_user_prompt(control: Control, node: ProcessNode, policy_texts: list[str]) -> str:
    process_context = {
        "nodeId": node.id,
        "nodeName": node.data.label or "Unnamed Step",
        "nodeDescription": node.data.description or "No description provided",
        "nodeType": node.type,
    }
    return "\n".join([
        "Evaluate the following control.",
        "\n## Control",
        f"ID: {control.id}",
        f"Type: {control.type or 'Not specified'}",
        f"Description: {control.description or 'No description provided'}",
        f"Owner: {control.owner or 'Unassigned'}",
        f"Implementation: {control.implementation or 'Not specified'}",
        f"Status: {control.status or 'Not specified'}",
        "\n## Process Context",
        json.dumps(process_context, indent=2),
        "\n## Effectiveness Criteria",
        CRITERIA,
        "\n## Relevant Policy / Regulatory Context",
        "\n\n".join(policy_texts) if policy_texts else "None provided.",
        "\nReturn your evaluation in the required JSON format.",
    ])


def _select(state: AnalysisState):
    model = state["process_model"]
    if model is None:
        return None
    processed = state["processed_entity_ids"]
    for node in model.nodes:
        for control in node.data.controls:
            key = ProcessedKey(STAGE.kind.value, control.id)
            if key not in processed:
                return key, (control, node)
    return None


def control_evaluation_node(state: AnalysisState, services: AnalysisServices) -> AnalysisState:
    """Control evaluation node for the LangGraph StateGraph."""

    def _process(state: AnalysisState, entity: tuple[Control, ProcessNode]) -> ControlEvaluationFinding:
        control, node = entity
        # Context comes from the owning step.
        chunks = services.retriever.get_relevant_context(node, state["documents"])
        prompt = compose_prompt(
            SYSTEM_PROMPT, _build_user_prompt(control, node, [c.text for c in chunks])
        )
        output = services.caller.call_structured(
            prompt, ControlEvaluationOutput, stage_options(STAGE.kind.value)
        )
        return build_control_finding(
            control, node, output, chunks, state["risk_findings"], services.excerpt_length
        )

    return run_stage(state, STAGE, _select, _process)
