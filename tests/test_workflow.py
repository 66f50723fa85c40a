"""End-to-end workflow tests: full runs, graceful degradation, resumption."""

from collections import Counter
from unittest.mock import patch

import pytest
from conftest import FakeOracle, make_services

from rac.graph import iter_workflow, run_workflow
from rac.main import resume_analysis, run_analysis
from rac.models.findings import AnalysisType
from rac.state import Step, all_findings, create_initial_state
from rac.utils.findings import ANALYSIS_FAILED_SUMMARY


@pytest.fixture
def degraded_services(mock_config, process_model, document_chunks):
    # Call 2 is the compliance prompt for the second process step.
    return make_services(FakeOracle(fail_on={2}), process_model, document_chunks)


class TestFullRun:
    def test_graph_run_completes_with_every_finding_kind(self, parameters, services):
        state = run_workflow(create_initial_state(parameters), services)

        assert state["status"] == "completed"
        assert state["current_step"] == Step.COMPLETED
        assert state["errors"] == []
        assert len(state["compliance_gap_findings"]) == 3
        assert len(state["risk_findings"]) == 3
        assert len(state["control_findings"]) == 1
        assert len(state["recommendation_findings"]) == 3
        assert state["summary"].startswith("# Analysis Summary")

    def test_run_analysis_result(self, services):
        result = run_analysis("proj-1", "pm-1", ["doc-1"], services=services)

        assert result.status == "completed"
        assert result.error is None
        assert result.completed_at is not None
        assert result.project_id == "proj-1"
        kinds = [f.kind for f in result.findings]
        assert kinds.count("compliance_gap") >= 1
        assert kinds.count("risk_assessment") >= 1
        assert kinds.count("control_evaluation") == 1
        assert kinds.count("recommendation") >= 1
        assert result.summary

    def test_oracle_called_once_per_entity(self, parameters, services, fake_oracle):
        run_workflow(create_initial_state(parameters), services)
        # 3 compliance + 3 risk + 1 control + 3 recommendations + 1 summary
        assert len(fake_oracle.prompts) == 11

    def test_subset_of_kinds(self, services, fake_oracle):
        result = run_analysis(
            "proj-1", "pm-1", ["doc-1"],
            analysis_kinds=[AnalysisType.COMPLIANCE_GAP.value],
            services=services,
        )
        assert result.status == "completed"
        assert {f.kind for f in result.findings} == {"compliance_gap"}
        assert len(fake_oracle.prompts) == 4  # three steps plus the summary

    def test_timeout_applies_to_every_request(self, services, fake_oracle):
        run_analysis("proj-1", "pm-1", ["doc-1"], services=services, timeout=7)

        assert len(fake_oracle.options) == 11
        assert {o.timeout for o in fake_oracle.options} == {7}
        assert services.caller.defaults.timeout == 120

    def test_resume_accepts_timeout(self, parameters, services, fake_oracle):
        for state in iter_workflow(create_initial_state(parameters), services):
            if len(state["risk_findings"]) == 1:
                break
        calls_so_far = len(fake_oracle.options)

        resume_analysis(state, services, timeout=3)

        assert {o.timeout for o in fake_oracle.options[calls_so_far:]} == {3}


class TestGracefulDegradation:
    def test_one_failed_call_costs_one_finding(self, degraded_services):
        result = run_analysis("proj-1", "pm-1", ["doc-1"], services=degraded_services)

        assert result.status == "completed"
        compliance = [f for f in result.findings if f.kind == "compliance_gap"]
        assert [f.process_node_id for f in compliance] == ["n1", "n3"]
        assert result.error == "Compliance gap analysis error (n2): connection refused"
        assert result.summary


class TestStepwiseExecution:
    def test_processed_set_only_grows(self, parameters, services):
        previous = frozenset()
        steps = []
        for state in iter_workflow(create_initial_state(parameters), services):
            assert previous <= state["processed_entity_ids"]
            previous = state["processed_entity_ids"]
            steps.append(state["current_step"])
        assert steps[-1] == Step.COMPLETED
        assert len(previous) == 3 + 3 + 1 + 3

    def test_stepwise_matches_graph_run(self, parameters, services, mock_config, process_model, document_chunks):
        *_, final = iter_workflow(create_initial_state(parameters), services)
        graph_state = run_workflow(
            create_initial_state(parameters), make_services(FakeOracle(), process_model, document_chunks)
        )
        assert len(all_findings(final)) == len(all_findings(graph_state))

        # Recommendation keys join finding ids, which are fresh per run.
        stepwise_keys = final["processed_entity_ids"]
        graph_keys = graph_state["processed_entity_ids"]
        assert Counter(k.stage for k in stepwise_keys) == Counter(k.stage for k in graph_keys)
        assert {k for k in stepwise_keys if k.stage != "recommendation"} == {
            k for k in graph_keys if k.stage != "recommendation"
        }


class TestResume:
    def test_resume_skips_processed_entities(self, parameters, services, fake_oracle):
        states = iter_workflow(create_initial_state(parameters), services)
        for state in states:
            if len(state["risk_findings"]) == 1:
                break
        calls_so_far = len(fake_oracle.prompts)

        result = resume_analysis(state, services)

        assert result.status == "completed"
        assert len([f for f in result.findings if f.kind == "risk_assessment"]) == 3
        assert len(fake_oracle.prompts) - calls_so_far == 2 + 1 + 3 + 1

    def test_rerunning_a_finished_state_is_a_no_op(self, parameters, services, fake_oracle):
        final = run_workflow(create_initial_state(parameters), services)
        calls = len(fake_oracle.prompts)
        again = run_workflow(final, services)
        assert len(fake_oracle.prompts) == calls
        assert all_findings(again) == all_findings(final)


class TestFailures:
    def test_missing_document_fails_result(self, services):
        result = run_analysis("proj-1", "pm-1", ["ghost"], services=services)
        assert result.status == "failed"
        assert result.findings == []
        assert result.error == "Error preparing analysis: Document ghost not found or has no chunks"
        assert result.completed_at is None
        assert result.summary == ANALYSIS_FAILED_SUMMARY

    @patch("rac.main.run_workflow", side_effect=RuntimeError("graph exploded"))
    def test_unexpected_error_becomes_failed_result(self, _mock_run, services):
        result = run_analysis("proj-1", "pm-1", ["doc-1"], services=services)
        assert result.status == "failed"
        assert result.error == "Error executing analysis: graph exploded"
        assert result.summary == ANALYSIS_FAILED_SUMMARY

    def test_invalid_parameters_raise_before_work(self, services, fake_oracle):
        with pytest.raises(ValueError):
            run_analysis("proj-1", "pm-1", [], services=services)
        services.process_models.load_process_model.assert_not_called()
        assert fake_oracle.prompts == []
