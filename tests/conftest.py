"""Shared fixtures for the RAC test suite."""

import json
from unittest.mock import MagicMock, patch

import pytest

from rac.agents.base import AnalysisServices
from rac.context.retrieval import RetrievalHelper
from rac.errors import ModelUnavailableError
from rac.llm.caller import StructuredCaller
from rac.llm.oracle import OracleOptions
from rac.models.findings import AnalysisParameters
from rac.models.process import Document, DocumentChunk, ProcessModel
from rac.state import Step, create_initial_state

POLICY_TEXT = (
    "All invoices must be approved by a manager before payment. "
    "Payment records shall be retained for seven years."
)


@pytest.fixture
def mock_config():
    """Patch the config singleton with test-friendly values."""
    test_config = {
        "oracle_provider": "ollama",
        "oracle_model": "test-model",
        "oracle_base_url": "http://oracle.test",
        "oracle_generate_path": "/api/generate",
        "oracle_response_field": "response",
        "oracle_timeout": 5,
        "llm_max_retries": 2,
        "llm_retry_multiplier": 0,
        "cache_enabled": False,
        "cache_ttl_seconds": 900,
        "batch_concurrency": 3,
        "retrieval_namespace": "kb",
        "retrieval_top_k": 5,
        "retrieval_content_type": "policy",
        "max_requirements": 5,
        "excerpt_length": 300,
        "stage_options": {
            "compliance_gap": {"temperature": 0.2, "max_tokens": 1500},
            "risk_assessment": {"temperature": 0.2, "max_tokens": 1500},
            "control_evaluation": {"temperature": 0.2, "max_tokens": 1500},
            "recommendation": {"temperature": 0.3, "max_tokens": 1000},
            "summary": {"temperature": 0.3, "max_tokens": 2000},
        },
        "max_stalled_iterations": 2,
        "recursion_limit": 500,
        "context_root": "./data",
        "output_dir": "./output",
        "log_level": "info",
    }
    with patch("rac.config._config", test_config):
        yield test_config


@pytest.fixture
def process_model():
    """Start, three steps (the middle one carrying a control), end."""
    return ProcessModel.model_validate({
        "id": "pm-1",
        "nodes": [
            {"id": "start", "type": "start", "data": {"label": "Start"}},
            {
                "id": "n1",
                "type": "step",
                "data": {"label": "Receive invoice", "description": "Invoices arrive by email", "owner": "AP clerk"},
            },
            {
                "id": "n2",
                "type": "step",
                "data": {
                    "label": "Approve payment",
                    "description": "A manager approves the invoice for payment",
                    "owner": "Finance manager",
                    "controls": [
                        {
                            "id": "c1",
                            "type": "preventive",
                            "description": "Manager approval of invoices",
                            "implementation": "Approval workflow in the ERP",
                            "owner": "Finance manager",
                            "status": "active",
                        }
                    ],
                },
            },
            {
                "id": "n3",
                "type": "step",
                "data": {"label": "Archive records", "description": "Payment records are archived", "owner": "AP clerk"},
            },
            {"id": "end", "type": "end", "data": {"label": "End"}},
        ],
        "edges": [
            {"id": "e1", "source": "start", "target": "n1"},
            {"id": "e2", "source": "n1", "target": "n2"},
            {"id": "e3", "source": "n2", "target": "n3"},
            {"id": "e4", "source": "n3", "target": "end"},
        ],
    })


@pytest.fixture
def policy_document():
    return Document(id="doc-1", text=POLICY_TEXT, metadata={"title": "Finance Policy", "category": "policy"})


COMPLIANCE_RESPONSE = {
    "requirementText": "All invoices must be approved by a manager before payment.",
    "status": "partially_compliant",
    "gap": "Approval evidence is not retained.",
    "remediation": "Record approver and timestamp in the ERP.",
    "confidence": 0.85,
    "reasoning": "The step describes approval but no evidence trail.",
}

RISK_RESPONSE = {
    "riskCategory": "financial reporting",
    "riskDescription": "Unapproved payments may be released.",
    "inherentRiskLevel": "High",
    "residualRiskLevel": "medium",
    "potentialImpact": "Financial loss from fraudulent invoices.",
    "likelihood": "Possible during peak periods.",
    "confidence": 0.7,
    "reasoning": "Manual approvals are skipped under time pressure.",
}

CONTROL_RESPONSE = {
    "controlDescription": "Manager approval of invoices",
    "effectiveness": "partially effective",
    "designEffectiveness": "effective",
    "operatingEffectiveness": "partially_effective",
    "issues": ["Approvals are not evidenced."],
    "improvementRecommendations": ["Enforce approval in the ERP."],
    "confidence": 0.75,
    "reasoning": "Design is sound; operation is inconsistent.",
}

RECOMMENDATION_RESPONSE = {
    "recommendation": "Automate invoice approval evidence capture.",
    "rationale": "Closes the evidence gap found in several findings.",
    "benefitDescription": "Audit-ready approvals.",
    "implementationComplexity": "Medium",
    "priority": "high",
    "confidence": 0.8,
    "reasoning": "Addresses the root cause.",
}

SUMMARY_RESPONSE = {
    "summary": "Invoice approvals lack evidence.",
    "keyInsights": ["Approval control only partially effective"],
    "priorityAreas": ["Approve payment"],
}

SCRIPT = {
    "You are the Compliance Gap Analysis agent": COMPLIANCE_RESPONSE,
    "You are the Risk Assessment agent": RISK_RESPONSE,
    "You are the Control Evaluation agent": CONTROL_RESPONSE,
    "You are the Recommendation agent": RECOMMENDATION_RESPONSE,
    "You are the Summary agent": SUMMARY_RESPONSE,
}


class FakeOracle:
    """Answers each stage's prompt with a canned JSON payload wrapped in prose.

    ``fail_on`` holds 1-based call numbers that raise ModelUnavailableError.
    """

    def __init__(self, fail_on=(), overrides=None):
        self.fail_on = set(fail_on)
        self.script = {**SCRIPT, **(overrides or {})}
        self.prompts = []
        self.options = []

    def generate(self, prompt, options):
        self.prompts.append(prompt)
        self.options.append(options)
        if len(self.prompts) in self.fail_on:
            raise ModelUnavailableError("connection refused")
        for marker, response in self.script.items():
            if prompt.startswith(marker):
                body = response if isinstance(response, str) else json.dumps(response)
                return f"Here is my assessment:\n```json\n{body}\n```"
        raise AssertionError(f"Unscripted prompt: {prompt[:80]}")


@pytest.fixture
def fake_oracle():
    return FakeOracle()


def make_services(oracle, process_model, documents_by_id) -> AnalysisServices:
    process_models = MagicMock()
    process_models.load_process_model.return_value = process_model
    documents = MagicMock()
    documents.load_document_chunks.side_effect = lambda doc_id: list(documents_by_id.get(doc_id, []))
    return AnalysisServices(
        caller=StructuredCaller(oracle, OracleOptions(model="test-model")),
        retriever=RetrievalHelper(),
        process_models=process_models,
        documents=documents,
    )


@pytest.fixture
def document_chunks():
    return {
        "doc-1": [
            DocumentChunk(text="Payment records shall be retained for seven years.", title="Finance Policy",
                          category="policy", chunk_index=1),
            DocumentChunk(text="All invoices must be approved by a manager before payment.", title="Finance Policy",
                          category="policy", chunk_index=0),
        ]
    }


@pytest.fixture
def services(mock_config, fake_oracle, process_model, document_chunks):
    return make_services(fake_oracle, process_model, document_chunks)


@pytest.fixture
def parameters():
    return AnalysisParameters(project_id="proj-1", process_model_id="pm-1", document_ids=("doc-1",))


@pytest.fixture
def prepared_state(parameters, process_model, policy_document):
    """State as it looks right after the prepare step."""
    return {
        **create_initial_state(parameters),
        "process_model": process_model,
        "documents": [policy_document],
        "status": "in_progress",
        "current_step": Step.COMPLIANCE_GAP,
    }
