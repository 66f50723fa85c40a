"""Entry point: validates input, runs the analysis graph, writes the result."""

import argparse
import atexit
import dataclasses
import logging
import threading

from rac.agents.base import AnalysisServices
from rac.config import get_config
from rac.context.providers import ChunkIndex, FileContextProvider
from rac.context.retrieval import RetrievalHelper
from rac.graph import run_workflow
from rac.llm.caller import StructuredCaller
from rac.llm.oracle import build_oracle, default_options
from rac.models.findings import AnalysisResult, AnalysisType, utc_now
from rac.state import AnalysisState, all_findings, create_initial_state
from rac.utils.cache import ResponseCache
from rac.utils.findings import ANALYSIS_FAILED_SUMMARY
from rac.utils.formatter import write_result
from rac.utils.validator import validate_parameters

logger = logging.getLogger(__name__)

_default_services: AnalysisServices | None = None
_default_services_lock = threading.Lock()


def build_services(
    config: dict | None = None,
    context_root: str | None = None,
    index: ChunkIndex | None = None,
) -> AnalysisServices:
    """Wire the oracle, caller, retrieval helper and file-backed providers from config."""
    config = config or get_config()

    cache = None
    if config.get("cache_enabled", True):
        cache = ResponseCache(ttl_seconds=config.get("cache_ttl_seconds", 900))

    caller = StructuredCaller(
        build_oracle(config),
        default_options(config),
        cache=cache,
        batch_concurrency=config.get("batch_concurrency", 3),
    )
    retriever = RetrievalHelper(
        index,
        namespace=config.get("retrieval_namespace", "kb"),
        top_k=config.get("retrieval_top_k", 5),
        content_type=config.get("retrieval_content_type", "policy"),
        max_requirements=config.get("max_requirements", 5),
    )
    provider = FileContextProvider(context_root or config.get("context_root", "./data"))

    return AnalysisServices(
        caller=caller,
        retriever=retriever,
        process_models=provider,
        documents=provider,
        excerpt_length=config.get("excerpt_length", 300),
    )


def get_default_services() -> AnalysisServices:
    """Services built from config on first use and shared by every later run."""
    global _default_services
    with _default_services_lock:
        if _default_services is None:
            _default_services = build_services()
        return _default_services


def close_services(services: AnalysisServices) -> None:
    """Release the oracle's connection pool, if it holds one."""
    close = getattr(services.caller.oracle, "close", None)
    if close is not None:
        close()


def shutdown() -> None:
    """Close and forget the shared default services."""
    global _default_services
    with _default_services_lock:
        if _default_services is not None:
            close_services(_default_services)
            _default_services = None


atexit.register(shutdown)


def _resolve_services(services: AnalysisServices | None, timeout: float | None) -> AnalysisServices:
    services = services or get_default_services()
    if timeout is None:
        return services
    return dataclasses.replace(services, caller=services.caller.with_defaults(timeout=timeout))


def to_result(state: AnalysisState, created_at=None) -> AnalysisResult:
    """Project a workflow state onto the result handed back to callers."""
    params = state["parameters"]
    status = state["status"] if state["status"] in ("completed", "failed") else "in_progress"
    summary = state["summary"]
    if not summary and status == "failed":
        summary = ANALYSIS_FAILED_SUMMARY
    return AnalysisResult(
        project_id=params.project_id,
        process_model_id=params.process_model_id,
        findings=all_findings(state),
        summary=summary,
        created_at=created_at or utc_now(),
        completed_at=utc_now() if status == "completed" else None,
        status=status,
        error="\n".join(state["errors"]) or None,
    )


def _execute(state: AnalysisState, services: AnalysisServices) -> AnalysisResult:
    created_at = utc_now()
    params = state["parameters"]
    try:
        final_state = run_workflow(state, services)
    except Exception as e:
        logger.exception("Analysis for project %s failed", params.project_id)
        return AnalysisResult(
            project_id=params.project_id,
            process_model_id=params.process_model_id,
            summary=ANALYSIS_FAILED_SUMMARY,
            created_at=created_at,
            status="failed",
            error=f"Error executing analysis: {e}",
        )

    result = to_result(final_state, created_at)
    logger.info(
        "Analysis %s finished: %s, %d findings, %d errors",
        result.id, result.status, len(result.findings), len(final_state["errors"]),
    )
    return result


def run_analysis(
    project_id: str,
    process_model_id: str,
    document_ids,
    analysis_kinds=None,
    user_id: str = "",
    services: AnalysisServices | None = None,
    timeout: float | None = None,
) -> AnalysisResult:
    """Run the full analysis pipeline for one process model.

    Args:
        project_id: Project the analysis belongs to.
        process_model_id: Process model to analyze.
        document_ids: Reference documents to analyze it against.
        analysis_kinds: Stages to run. None runs every stage.
        user_id: Who requested the run.
        services: Collaborators to use. None uses the shared default services.
        timeout: Per-request model timeout in seconds. None keeps the configured one.

    Raises ValueError on invalid parameters; every other failure is reported
    on the returned result.
    """
    params = validate_parameters(project_id, process_model_id, document_ids, analysis_kinds, user_id)
    return _execute(create_initial_state(params), _resolve_services(services, timeout))


def resume_analysis(
    state: AnalysisState,
    services: AnalysisServices | None = None,
    timeout: float | None = None,
) -> AnalysisResult:
    """Continue a run from an intermediate state; processed entities are not redone."""
    return _execute(state, _resolve_services(services, timeout))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="rac", description="Analyze a process model for compliance gaps, risks and controls."
    )
    parser.add_argument("--project", required=True, help="project id")
    parser.add_argument("--process-model", required=True, help="process model id")
    parser.add_argument(
        "--document", action="append", default=[], dest="documents", help="document id (repeatable)"
    )
    parser.add_argument(
        "--kind",
        action="append",
        dest="kinds",
        choices=[k.value for k in AnalysisType],
        help="analysis kind to run (repeatable; default: all)",
    )
    parser.add_argument("--user", default="", help="requesting user id")
    parser.add_argument("--context-root", help="directory holding process_models/ and documents/")
    parser.add_argument("--timeout", type=float, help="per-request model timeout in seconds")
    args = parser.parse_args(argv)

    config = get_config()
    logging.basicConfig(
        level=str(config.get("log_level", "info")).upper(),
        format="[RAC] %(levelname)s %(name)s: %(message)s",
    )

    services = build_services(config, context_root=args.context_root)
    try:
        result = run_analysis(
            args.project,
            args.process_model,
            args.documents,
            analysis_kinds=args.kinds,
            user_id=args.user,
            services=services,
            timeout=args.timeout,
        )
    except ValueError as e:
        parser.error(str(e))
    finally:
        close_services(services)

    output_path = write_result(result)
    print(f"[RAC] Status: {result.status}")
    print(f"[RAC] Findings: {len(result.findings)}")
    if result.error:
        print(f"[RAC] Errors:\n{result.error}")
    print(f"[RAC] Output written to: {output_path}")


if __name__ == "__main__":
    main()
