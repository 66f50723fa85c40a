"""Finding builders — pure functions from oracle output + context to findings."""

import re

from rac.models.findings import (
    ComplianceGapFinding,
    ComplianceStatus,
    ConfidenceScore,
    ControlEffectiveness,
    ControlEvaluationFinding,
    DocumentReference,
    RecommendationFinding,
    RiskAssessmentFinding,
    StatusIndicators,
)
from rac.models.process import ContextChunk, Control, ProcessNode, Requirement
from rac.models.schemas import (
    ComplianceGapOutput,
    ControlEvaluationOutput,
    RecommendationOutput,
    RiskAssessmentOutput,
    SummaryOutput,
)

EXCERPT_LENGTH = 300
EXCERPT_CONTEXT = 100

_STATUS_DISPLAY = {
    ComplianceStatus.COMPLIANT: ("✓", "green", "Process step is compliant with requirements"),
    ComplianceStatus.PARTIALLY_COMPLIANT: ("⚠", "yellow", "Process step is partially compliant with requirements"),
    ComplianceStatus.NON_COMPLIANT: ("✗", "red", "Process step is non-compliant with requirements"),
    ComplianceStatus.UNKNOWN: ("?", "gray", "Compliance status cannot be determined"),
}

RISK_TAXONOMY = {
    "Operational": ("operation", "process", "people", "operational", "human", "error", "manual"),
    "Financial": ("financial", "market", "liquidity", "credit", "accounting", "budget", "cost"),
    "Compliance": ("compliance", "regulatory", "regulation", "law", "requirement", "policy"),
    "Strategic": ("strategic", "objective", "goal", "mission", "planning", "direction"),
    "Reputational": ("reputation", "brand", "image", "public", "perception", "media"),
    "Technology": ("technology", "system", "it", "cyber", "data", "security", "infrastructure"),
    "Legal": ("legal", "contract", "liability", "lawsuit", "litigation", "dispute"),
}
DEFAULT_RISK_CATEGORY = "Operational"

NO_FINDINGS_SUMMARY = "No findings were generated during the analysis."
FAILED_SUMMARY = "An error occurred while generating the summary."
ANALYSIS_FAILED_SUMMARY = "Analysis failed due to an error."


def _excerpt(text: str, matching: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    position = text.lower().find(matching.lower()) if matching else -1
    if position < 0:
        return text[:limit] + "..."
    start = max(0, position - EXCERPT_CONTEXT)
    end = min(len(text), position + len(matching) + EXCERPT_CONTEXT)
    excerpt = text[start:end]
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(text):
        excerpt = excerpt + "..."
    return excerpt


def create_document_references(
    chunks: list[ContextChunk], matching: str, limit: int = EXCERPT_LENGTH
) -> list[DocumentReference]:
    """One reference per chunk; long chunks are cut down around ``matching``."""
    return [
        DocumentReference(
            document_id=chunk.document_id,
            title=chunk.title,
            excerpt=_excerpt(chunk.text, matching, limit),
        )
        for chunk in chunks
    ]


def confidence_band(score: float) -> str:
    if score >= 0.8:
        return "high"
    if score >= 0.5:
        return "moderate"
    return "low"


def compliance_status_indicators(status: ComplianceStatus, confidence: float) -> StatusIndicators:
    indicator, color, explanation = _STATUS_DISPLAY[status]
    return StatusIndicators(
        indicator=indicator,
        color=color,
        explanation=f"{explanation} ({confidence_band(confidence)} confidence)",
    )


def _mentions(keyword: str, text: str) -> bool:
    # Two-letter keywords ("it") would match inside unrelated words.
    if len(keyword) <= 2:
        return re.search(rf"\b{re.escape(keyword)}\b", text) is not None
    return keyword in text


def map_risk_to_taxonomy(category: str) -> str:
    """Normalize a free-text risk category into one of the taxonomy buckets."""
    lowered = category.strip().lower()
    for bucket in RISK_TAXONOMY:
        if lowered == bucket.lower():
            return bucket
    for bucket, keywords in RISK_TAXONOMY.items():
        if any(_mentions(keyword, lowered) for keyword in keywords):
            return bucket
    return DEFAULT_RISK_CATEGORY


def evaluate_overall_effectiveness(
    implementation: str | None, design: str, operating: str
) -> ControlEffectiveness:
    if not implementation or not implementation.strip():
        return ControlEffectiveness.NOT_IMPLEMENTED
    if design == "ineffective" or operating == "ineffective":
        return ControlEffectiveness.INEFFECTIVE
    if design == "effective" and operating == "effective":
        return ControlEffectiveness.EFFECTIVE
    return ControlEffectiveness.PARTIALLY_EFFECTIVE


def build_compliance_gap_finding(
    node: ProcessNode,
    output: ComplianceGapOutput,
    chunks: list[ContextChunk],
    requirements: list[Requirement],
    excerpt_length: int = EXCERPT_LENGTH,
) -> ComplianceGapFinding:
    # Narrow references to the document the model's requirement came from.
    matching = next(
        (
            r for r in requirements
            if output.requirement_text in r.text or r.text in output.requirement_text
        ),
        None,
    )
    cited = [c for c in chunks if c.document_id == matching.document_id] if matching else chunks

    return ComplianceGapFinding(
        description=f"Compliance assessment for {node.display_name}",
        process_node_id=node.id,
        requirement_text=output.requirement_text,
        status=output.status,
        gap=output.gap,
        remediation=output.remediation,
        confidence=ConfidenceScore(score=output.confidence, reasoning=output.reasoning),
        references=create_document_references(cited, output.requirement_text, excerpt_length),
        status_indicators=compliance_status_indicators(output.status, output.confidence),
    )


def build_risk_finding(
    node: ProcessNode,
    output: RiskAssessmentOutput,
    chunks: list[ContextChunk],
    excerpt_length: int = EXCERPT_LENGTH,
) -> RiskAssessmentFinding:
    associated = output.associated_controls or [c.id for c in node.data.controls]
    return RiskAssessmentFinding(
        description=f"Risk assessment for {node.display_name}",
        process_node_id=node.id,
        risk_category=map_risk_to_taxonomy(output.risk_category),
        risk_description=output.risk_description,
        inherent_risk_level=output.inherent_risk_level,
        residual_risk_level=output.residual_risk_level,
        potential_impact=output.potential_impact,
        likelihood=output.likelihood,
        associated_controls=associated,
        confidence=ConfidenceScore(score=output.confidence, reasoning=output.reasoning),
        references=create_document_references(chunks, output.risk_description, excerpt_length),
    )


def build_control_finding(
    control: Control,
    node: ProcessNode,
    output: ControlEvaluationOutput,
    chunks: list[ContextChunk],
    risk_findings: list[RiskAssessmentFinding],
    excerpt_length: int = EXCERPT_LENGTH,
) -> ControlEvaluationFinding:
    mitigated = list(output.mitigated_risks or [])
    if not mitigated:
        mitigated = [
            f.risk_description for f in risk_findings if control.id in f.associated_controls
        ]

    return ControlEvaluationFinding(
        description=f"Control evaluation for {output.control_description}",
        control_id=control.id,
        process_node_id=node.id,
        control_description=output.control_description,
        effectiveness=evaluate_overall_effectiveness(
            control.implementation,
            output.design_effectiveness,
            output.operating_effectiveness,
        ),
        design_effectiveness=output.design_effectiveness,
        operating_effectiveness=output.operating_effectiveness,
        issues=output.issues or [],
        improvement_recommendations=output.improvement_recommendations or [],
        mitigated_risks=mitigated,
        confidence=ConfidenceScore(score=output.confidence, reasoning=output.reasoning),
        references=create_document_references(chunks, output.control_description, excerpt_length),
    )


def build_recommendation_finding(
    node: ProcessNode | None,
    output: RecommendationOutput,
    related: list,
) -> RecommendationFinding:
    references = []
    seen = set()
    for finding in related:
        for ref in finding.references:
            key = (ref.document_id, ref.excerpt)
            if key not in seen:
                seen.add(key)
                references.append(ref)

    return RecommendationFinding(
        description=f"Recommendation for {node.display_name if node else 'process step'}",
        process_node_id=node.id if node else None,
        recommendation=output.recommendation,
        rationale=output.rationale,
        benefit_description=output.benefit_description,
        implementation_complexity=output.implementation_complexity,
        priority=output.priority,
        related_findings=[f.id for f in related],
        confidence=ConfidenceScore(score=output.confidence, reasoning=output.reasoning),
        references=references,
    )


def format_summary(output: SummaryOutput) -> str:
    lines = ["# Analysis Summary", "", output.summary.strip(), "", "## Key Insights"]
    lines.extend(f"- {insight}" for insight in output.key_insights)
    lines.extend(["", "## Priority Areas"])
    lines.extend(f"- {area}" for area in output.priority_areas)
    return "\n".join(lines).strip()
