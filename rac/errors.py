"""Error taxonomy for the analysis pipeline.

Oracle errors describe what went wrong talking to the model, structured-output
errors describe what went wrong turning its text into a validated payload.
Stage agents catch both and record them on the state; context and stall errors
end the run.
"""


class AnalysisError(Exception):
    """Base class for every error raised by the pipeline."""


# --- Oracle transport ---

class ModelRequestError(AnalysisError):
    """The oracle answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"LLM request failed: {status_code} {body[:500]}")


class ModelUnavailableError(AnalysisError):
    """The oracle could not be reached (connection refused, timeout, ...)."""


class ModelResponseFormatError(AnalysisError):
    """The oracle answered successfully but the envelope had no usable text."""


# --- Structured output ---

class StructuredOutputError(AnalysisError):
    """Raw oracle text could not be turned into a validated payload."""


class NoStructuredPayloadError(StructuredOutputError):
    """Neither a JSON object nor a JSON array was found in the response."""


class PayloadParseError(StructuredOutputError):
    """A payload was found but is not valid JSON."""

    def __init__(self, message: str, payload: str = ""):
        self.payload = payload
        super().__init__(message)


class SchemaValidationError(StructuredOutputError):
    """The parsed payload does not match the declared schema."""

    def __init__(self, schema_name: str, field_paths: list[str], details: str = ""):
        self.schema_name = schema_name
        self.field_paths = field_paths
        message = f"{schema_name} validation failed at: {', '.join(field_paths) or '<root>'}"
        if details:
            message += f" ({details})"
        super().__init__(message)


# --- Workflow ---

class ContextLoadError(AnalysisError):
    """The process model or a reference document could not be loaded."""


class EngineStallError(AnalysisError):
    """The workflow made no forward progress for too many consecutive iterations."""

    def __init__(self, step: str, iterations: int):
        self.step = step
        self.iterations = iterations
        super().__init__(
            f"Workflow stalled at step '{step}' after {iterations} "
            f"iterations without progress"
        )
