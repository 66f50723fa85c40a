"""Finding records produced by the analysis stages, and the run's final result.

Findings are frozen once built; stages only ever append new ones.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def generate_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisType(str, Enum):
    COMPLIANCE_GAP = "compliance_gap"
    RISK_ASSESSMENT = "risk_assessment"
    CONTROL_EVALUATION = "control_evaluation"
    RECOMMENDATION = "recommendation"


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    PARTIALLY_COMPLIANT = "partially_compliant"
    NON_COMPLIANT = "non_compliant"
    UNKNOWN = "unknown"


class RiskLevel(str, Enum):
    """Ordinal scale: high > medium > low > insignificant."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INSIGNIFICANT = "insignificant"


class ControlEffectiveness(str, Enum):
    EFFECTIVE = "effective"
    PARTIALLY_EFFECTIVE = "partially_effective"
    INEFFECTIVE = "ineffective"
    NOT_IMPLEMENTED = "not_implemented"


class DocumentReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    title: str | None = None
    excerpt: str
    location: str | None = None


class ConfidenceScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    reasoning: str


class StatusIndicators(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicator: str
    color: str
    explanation: str


class _FindingBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    description: str
    references: list[DocumentReference] = Field(default_factory=list)
    confidence: ConfidenceScore
    created_at: datetime = Field(default_factory=utc_now)


class ComplianceGapFinding(_FindingBase):
    kind: Literal["compliance_gap"] = "compliance_gap"
    process_node_id: str
    requirement_id: str | None = None
    requirement_text: str
    status: ComplianceStatus
    gap: str | None = None
    remediation: str | None = None
    status_indicators: StatusIndicators | None = None


class RiskAssessmentFinding(_FindingBase):
    kind: Literal["risk_assessment"] = "risk_assessment"
    process_node_id: str
    risk_category: str
    risk_description: str
    inherent_risk_level: RiskLevel
    residual_risk_level: RiskLevel
    potential_impact: str
    likelihood: str
    associated_controls: list[str] = Field(default_factory=list)


class ControlEvaluationFinding(_FindingBase):
    kind: Literal["control_evaluation"] = "control_evaluation"
    control_id: str
    process_node_id: str | None = None
    control_description: str
    effectiveness: ControlEffectiveness
    design_effectiveness: str
    operating_effectiveness: str
    issues: list[str] = Field(default_factory=list)
    improvement_recommendations: list[str] = Field(default_factory=list)
    mitigated_risks: list[str] = Field(default_factory=list)


class RecommendationFinding(_FindingBase):
    kind: Literal["recommendation"] = "recommendation"
    process_node_id: str | None = None
    recommendation: str
    rationale: str
    benefit_description: str
    implementation_complexity: Literal["low", "medium", "high"]
    priority: Literal["low", "medium", "high"]
    related_findings: list[str]


Finding = Annotated[
    Union[
        ComplianceGapFinding,
        RiskAssessmentFinding,
        ControlEvaluationFinding,
        RecommendationFinding,
    ],
    Field(discriminator="kind"),
]


class AnalysisParameters(BaseModel):
    """Immutable configuration of one analysis run."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    process_model_id: str
    document_ids: tuple[str, ...]
    analysis_kinds: tuple[AnalysisType, ...] = tuple(AnalysisType)
    user_id: str = ""


class AnalysisResult(BaseModel):
    """What a caller gets back from a run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    project_id: str
    process_model_id: str
    findings: list[Finding] = Field(default_factory=list)
    summary: str = ""
    created_at: datetime
    completed_at: datetime | None = None
    status: Literal["in_progress", "completed", "failed"]
    error: str | None = None
