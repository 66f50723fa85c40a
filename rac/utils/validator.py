"""Input validation — checks run parameters before any context is loaded."""

from rac.models.findings import AnalysisParameters, AnalysisType


def _require_id(value, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string.")
    return value.strip()


def validate_parameters(
    project_id: str,
    process_model_id: str,
    document_ids,
    analysis_kinds=None,
    user_id: str = "",
) -> AnalysisParameters:
    """Validate the inputs of one run and return them as ``AnalysisParameters``.

    Raises ValueError if an id is empty, no document is given, or an analysis
    kind is unknown. ``analysis_kinds=None`` requests every kind.
    """
    project_id = _require_id(project_id, "Project id")
    process_model_id = _require_id(process_model_id, "Process model id")

    if isinstance(document_ids, str) or not document_ids:
        raise ValueError("At least one document id is required.")
    documents = tuple(_require_id(d, "Document id") for d in document_ids)

    if analysis_kinds is None:
        kinds = tuple(AnalysisType)
    else:
        kinds = []
        for kind in analysis_kinds:
            try:
                kinds.append(AnalysisType(kind))
            except ValueError:
                known = ", ".join(k.value for k in AnalysisType)
                raise ValueError(f"Unknown analysis kind '{kind}'. Expected one of: {known}.") from None
        if not kinds:
            raise ValueError("At least one analysis kind is required.")
        kinds = tuple(dict.fromkeys(kinds))

    return AnalysisParameters(
        project_id=project_id,
        process_model_id=process_model_id,
        document_ids=documents,
        analysis_kinds=kinds,
        user_id=user_id or "",
    )
