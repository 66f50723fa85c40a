"""Summary Agent — closes the run with a narrative over every finding.

Runs once, after recommendations. The run ends ``completed`` whether or not
the summary itself succeeds.
"""

import json
import logging

from rac.agents.base import AnalysisServices, compose_prompt
from rac.config import stage_options
from rac.models.schemas import SummaryOutput
from rac.state import AnalysisState, Step, all_findings
from rac.utils.findings import FAILED_SUMMARY, NO_FINDINGS_SUMMARY, format_summary

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are the Summary agent in a process compliance review.

Your job is to read every finding from the compliance gap, risk, control, \
and recommendation stages and write a concise, high-level summary that \
highlights the most significant issues.

You MUST respond with a single JSON object with these fields:
{
  "summary": "a short narrative of the analysis",
  "keyInsights": ["key insights from the findings"],
  "priorityAreas": ["areas that need attention first"]
}

Respond ONLY with the JSON object. No markdown fences, no commentary.
"""


def _build_user_prompt(findings: list, state: AnalysisState) -> str:
    model = state["process_model"]
    model_json = model.model_dump(mode="json") if model is not None else None
    return "\n".join([
        "Summarize the following analysis findings.",
        "\n## Findings",
        json.dumps([f.model_dump(mode="json") for f in findings], indent=2),
        "\n## Process Model",
        json.dumps(model_json, indent=2),
        "\nReturn your summary in the required JSON format.",
    ])


def summary_node(state: AnalysisState, services: AnalysisServices) -> AnalysisState:
    """Summary node for the LangGraph StateGraph."""
    if state["current_step"] != Step.RECOMMENDATION_COMPLETE:
        return state

    findings = all_findings(state)
    if not findings:
        logger.info("No findings to summarize")
        return {
            **state,
            "summary": NO_FINDINGS_SUMMARY,
            "status": "completed",
            "current_step": Step.COMPLETED,
        }

    try:
        prompt = compose_prompt(SYSTEM_PROMPT, _build_user_prompt(findings, state))
        output = services.caller.call_structured(prompt, SummaryOutput, stage_options("summary"))
    except Exception as e:
        logger.warning("Summary generation failed: %s", e)
        return {
            **state,
            "errors": state["errors"] + [f"Summary error: {e}"],
            "summary": FAILED_SUMMARY,
            "status": "completed",
            "current_step": Step.COMPLETED,
        }

    logger.info("Summary generated over %d findings", len(findings))
    return {
        **state,
        "summary": format_summary(output),
        "status": "completed",
        "current_step": Step.COMPLETED,
    }
