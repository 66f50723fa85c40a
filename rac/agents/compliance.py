"""Compliance Gap Agent — checks one process step at a time against policy requirements.

Required output schema:
{
  "requirementText": "string",
  "status": "compliant | partially_compliant | non_compliant | unknown",
  "gap": "string (optional)",
  "remediation": "string (optional)",
  "confidence": "number 0-1",
  "reasoning": "string"
}
"""

import json

from rac.agents.base import AnalysisServices, StageSpec, compose_prompt, run_stage
from rac.config import stage_options
from rac.models.findings import AnalysisType, ComplianceGapFinding, ComplianceStatus
from rac.models.process import ProcessNode, Requirement
from rac.models.schemas import ComplianceGapOutput
from rac.state import AnalysisState, ProcessedKey, Step
from rac.utils.findings import build_compliance_gap_finding

STAGE = StageSpec(
    kind=AnalysisType.COMPLIANCE_GAP,
    label="Compliance gap analysis",
    ready_steps=frozenset({Step.COMPLIANCE_GAP}),
    in_progress=Step.COMPLIANCE_GAP,
    complete=Step.COMPLIANCE_GAP_COMPLETE,
    findings_field="compliance_gap_findings",
)

SYSTEM_PROMPT = f"""\
You are the Compliance Gap Analysis agent in a process compliance review.

Your job is to compare ONE business process step against the policy and \
regulatory requirements provided, decide whether the step complies, describe \
any gap, and propose remediation.

Assign exactly one status:
- {ComplianceStatus.COMPLIANT.value}: the step fully meets the requirements
- {ComplianceStatus.PARTIALLY_COMPLIANT.value}: the step meets some but not all requirements
- {ComplianceStatus.NON_COMPLIANT.value}: the step fails key requirements
- {ComplianceStatus.UNKNOWN.value}: there is not enough information to decide

You MUST respond with a single JSON object with these fields:
{{
  "requirementText": "the requirement text that applies to this step",
  "status": "one of the statuses above",
  "gap": "description of the gap (omit or null when compliant)",
  "remediation": "concrete remediation for the gap (omit or null when compliant)",
  "confidence": number between 0 and 1,
  "reasoning": "why you chose this status and confidence"
}}

Rules:
- Rely only on the information provided.
- Quote requirement text verbatim where possible.
- Respond ONLY with the JSON object. No markdown fences, no commentary.
"""


def _build_user_prompt(node: ProcessNode, policy_texts: list[str], requirements: list[Requirement]) -> str:
    controls = [c.model_dump() for c in node.data.controls]
    parts = [
        "Analyze the following process step for compliance gaps.",
        "\n## Process Step",
        f"ID: {node.id}",
        f"Type: {node.type}",
        f"Name: {node.data.label or 'Unnamed Step'}",
        f"Description: {node.data.description or 'No description provided'}",
        f"Owner: {node.data.owner or 'Unassigned'}",
        f"Controls: {json.dumps(controls, indent=2) if controls else 'None'}",
    ]

    if requirements:
        parts.append("\n## Specific Requirements Identified")
        parts.extend(f"{i}. {r.text}" for i, r in enumerate(requirements, 1))
        parts.append(
            "\nPrioritize these requirements, but consider any other relevant "
            "requirement in the policy context."
        )

    parts.append("\n## Relevant Policy / Regulatory Requirements")
    parts.append("\n\n".join(policy_texts) if policy_texts else "None provided.")
    parts.append("\nReturn your assessment in the required JSON format.")
    return "\n".join(parts)


def _select(state: AnalysisState):
    model = state["process_model"]
    if model is None:
        return None
    processed = state["processed_entity_ids"]
    for node in model.analyzable_nodes():
        key = ProcessedKey(STAGE.kind.value, node.id)
        if key not in processed:
            return key, node
    return None


def compliance_gap_node(state: AnalysisState, services: AnalysisServices) -> AnalysisState:
    """Compliance gap node for the LangGraph StateGraph."""

    def _process(state: AnalysisState, node: ProcessNode) -> ComplianceGapFinding:
        chunks = services.retriever.get_relevant_context(node, state["documents"])
        requirements = services.retriever.extract_requirements(node, chunks)
        prompt = compose_prompt(
            SYSTEM_PROMPT,
            _build_user_prompt(node, [c.text for c in chunks], requirements),
        )
        output = services.caller.call_structured(
            prompt, ComplianceGapOutput, stage_options(STAGE.kind.value)
        )
        return build_compliance_gap_finding(
            node, output, chunks, requirements, services.excerpt_length
        )

    return run_stage(state, STAGE, _select, _process)
