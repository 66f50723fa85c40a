"""Risk Assessment Agent — one process step per call, steps with compliance gaps first."""

import json

from rac.agents.base import AnalysisServices, StageSpec, compose_prompt, run_stage
from rac.config import stage_options
from rac.models.findings import AnalysisType, ComplianceStatus, RiskAssessmentFinding, RiskLevel
from rac.models.process import ProcessNode
from rac.models.schemas import RiskAssessmentOutput
from rac.state import AnalysisState, ProcessedKey, Step
from rac.utils.findings import build_risk_finding

STAGE = StageSpec(
    kind=AnalysisType.RISK_ASSESSMENT,
    label="Risk assessment",
    ready_steps=frozenset({Step.COMPLIANCE_GAP_COMPLETE, Step.RISK_ASSESSMENT}),
    in_progress=Step.RISK_ASSESSMENT,
    complete=Step.RISK_ASSESSMENT_COMPLETE,
    findings_field="risk_findings",
)

TAXONOMY_GUIDE = """\
- Operational: people, processes, systems, or external events affecting operations
- Financial: financial reporting, accounting, market fluctuations, or liquidity
- Compliance: legal or regulatory requirements and internal policy
- Strategic: risks created by or affecting business strategy and objectives
- Reputational: the organization's brand, image, or reputation
- Technology: IT systems, data security, or technology infrastructure
- Legal: contracts, disputes, or legal liability"""

SYSTEM_PROMPT = f"""\
You are the Risk Assessment agent in a process compliance review.

Your job is to analyze ONE business process step, identify its most \
significant risk, place it in the organizational taxonomy, and rate it \
before and after the existing controls.

Taxonomy categories:
{TAXONOMY_GUIDE}

Risk levels (inherent = before controls, residual = after controls):
- {RiskLevel.HIGH.value}: severe impact, high likelihood
- {RiskLevel.MEDIUM.value}: moderate impact, moderate likelihood
- {RiskLevel.LOW.value}: minor impact, low likelihood
- {RiskLevel.INSIGNIFICANT.value}: negligible impact, very low likelihood

You MUST respond with a single JSON object with these fields:
{{
  "riskCategory": "one taxonomy category",
  "riskDescription": "the risk, stated specifically",
  "inherentRiskLevel": "one risk level",
  "residualRiskLevel": "one risk level",
  "potentialImpact": "consequences if the risk materializes",
  "likelihood": "how likely it is and what drives that",
  "associatedControls": ["ids of controls that mitigate this risk"],
  "confidence": number between 0 and 1,
  "reasoning": "the evidence behind the rating and confidence"
}}

Rules:
- Focus on unmitigated risks and on risks where controls look insufficient.
- Rely only on the information provided.
- Respond ONLY with the JSON object. No markdown fences, no commentary.
"""


def _build_user_prompt(node: ProcessNode, policy_texts: list[str]) -> str:
    controls = [c.model_dump() for c in node.data.controls]
    return "\n".join([
        "Assess the risks of the following process step.",
        "\n## Process Step",
        f"ID: {node.id}",
        f"Type: {node.type}",
        f"Name: {node.data.label or 'Unnamed Step'}",
        f"Description: {node.data.description or 'No description provided'}",
        f"Owner: {node.data.owner or 'Unassigned'}",
        f"Controls: {json.dumps(controls, indent=2) if controls else 'None'}",
        "\n## Organizational Risk Taxonomy",
        TAXONOMY_GUIDE,
        "\n## Relevant Policy / Regulatory Context",
        "\n\n".join(policy_texts) if policy_texts else "None provided.",
        "\nReturn your assessment in the required JSON format.",
    ])


def _select(state: AnalysisState):
    model = state["process_model"]
    if model is None:
        return None
    processed = state["processed_entity_ids"]
    flagged = {
        f.process_node_id
        for f in state["compliance_gap_findings"]
        if f.status != ComplianceStatus.COMPLIANT
    }
    pending = [
        node for node in model.analyzable_nodes()
        if ProcessedKey(STAGE.kind.value, node.id) not in processed
    ]
    ordered = [n for n in pending if n.id in flagged] + [n for n in pending if n.id not in flagged]
    if not ordered:
        return None
    return ProcessedKey(STAGE.kind.value, ordered[0].id), ordered[0]


def risk_assessment_node(state: AnalysisState, services: AnalysisServices) -> AnalysisState:
    """Risk assessment node for the LangGraph StateGraph."""

    def _process(state: AnalysisState, node: ProcessNode) -> RiskAssessmentFinding:
        chunks = services.retriever.get_relevant_context(node, state["documents"])
        prompt = compose_prompt(SYSTEM_PROMPT, _build_user_prompt(node, [c.text for c in chunks]))
        output = services.caller.call_structured(
            prompt, RiskAssessmentOutput, stage_options(STAGE.kind.value)
        )
        return build_risk_finding(node, output, chunks, services.excerpt_length)

    return run_stage(state, STAGE, _select, _process)
