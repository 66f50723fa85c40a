"""Output writer — persists a finished AnalysisResult as JSON."""

from pathlib import Path

from rac.config import get_config
from rac.models.findings import AnalysisResult


def write_result(result: AnalysisResult, output_dir: str | Path | None = None) -> Path:
    """Write ``result`` to ``<output_dir>/analysis-<id>.json``.

    ``output_dir`` defaults to the configured ``output_dir``. Returns the
    Path to the written file.
    """
    directory = Path(output_dir or get_config().get("output_dir", "./output"))
    directory.mkdir(parents=True, exist_ok=True)

    output_path = directory / f"analysis-{result.id}.json"
    output_path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
    return output_path
