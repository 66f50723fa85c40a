"""Schemas the oracle's JSON answers are validated against.

Field names follow the camelCase keys the prompts ask for; attributes are
snake_case. Enum-like strings are normalized before validation since models
routinely vary case and separators.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rac.models.findings import ComplianceStatus, ControlEffectiveness, RiskLevel

SubEffectiveness = Literal["effective", "partially effective", "ineffective"]
Rating = Literal["low", "medium", "high"]


def _snake_token(value):
    if isinstance(value, str):
        return value.strip().lower().replace(" ", "_").replace("-", "_")
    return value


def _spaced_token(value):
    if isinstance(value, str):
        return value.strip().lower().replace("_", " ").replace("-", " ")
    return value


class _OracleOutput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str


class ComplianceGapOutput(_OracleOutput):
    requirement_text: str
    status: ComplianceStatus
    gap: str | None = None
    remediation: str | None = None

    _normalize_status = field_validator("status", mode="before")(_snake_token)


class RiskAssessmentOutput(_OracleOutput):
    risk_category: str
    risk_description: str
    inherent_risk_level: RiskLevel
    residual_risk_level: RiskLevel
    potential_impact: str
    likelihood: str
    associated_controls: list[str] | None = None

    _normalize_levels = field_validator(
        "inherent_risk_level", "residual_risk_level", mode="before"
    )(_snake_token)


class ControlEvaluationOutput(_OracleOutput):
    control_description: str
    # Advisory only; the finding's effectiveness is derived from the two
    # sub-dimensions below.
    effectiveness: ControlEffectiveness | None = None
    design_effectiveness: SubEffectiveness
    operating_effectiveness: SubEffectiveness
    issues: list[str] | None = None
    improvement_recommendations: list[str] | None = None
    mitigated_risks: list[str] | None = None

    _normalize_overall = field_validator("effectiveness", mode="before")(_snake_token)
    _normalize_dimensions = field_validator(
        "design_effectiveness", "operating_effectiveness", mode="before"
    )(_spaced_token)


class RecommendationOutput(_OracleOutput):
    recommendation: str
    rationale: str
    benefit_description: str
    implementation_complexity: Rating
    priority: Rating

    _normalize_ratings = field_validator(
        "implementation_complexity", "priority", mode="before"
    )(_snake_token)


class SummaryOutput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    summary: str
    key_insights: list[str]
    priority_areas: list[str]
