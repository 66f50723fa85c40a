"""Shared parsing and retry utilities for oracle responses."""

import logging

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from rac.errors import NoStructuredPayloadError

logger = logging.getLogger(__name__)


def _balanced_span(text: str, start: int) -> str:
    """Return the bracketed span opening at ``start``.

    String literals are skipped so braces inside them do not count. If the
    span never closes, the remainder of the text is returned so the caller
    sees it as a truncated (unparseable) payload rather than a missing one.
    """
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return text[start:]


def extract_json_payload(text: str) -> str:
    """Extract the first JSON object (or, failing that, array) from LLM output.

    Models wrap JSON in prose or markdown fences; object search takes
    priority over array search.
    Raises NoStructuredPayloadError if neither bracket appears.
    """
    for opener in ("{", "["):
        start = text.find(opener)
        if start >= 0:
            return _balanced_span(text, start)
    raise NoStructuredPayloadError("No valid JSON found in LLM response")


def _is_transient(exc: BaseException) -> bool:
    """Return True if the exception is a transient HTTP/network error worth retrying."""
    if isinstance(exc, httpx.TimeoutException):
        return True
    if isinstance(exc, httpx.ConnectError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in (429, 500, 502, 503)
    return False


def invoke_with_retry(fn, max_retries: int = 3):
    """Call ``fn()`` with exponential backoff on transient errors.

    Retries on HTTP 429/500/502/503, connection errors, and timeouts.
    Non-transient errors (auth failures, bad requests) are raised immediately.
    """
    from rac.config import get_config

    config = get_config()
    retries = config.get("llm_max_retries", max_retries)
    multiplier = config.get("llm_retry_multiplier", 1)

    @retry(
        stop=stop_after_attempt(retries + 1),  # +1 because first attempt counts
        wait=wait_exponential(multiplier=multiplier, min=0, max=16),
        retry=retry_if_exception(_is_transient),
        reraise=True,
        before_sleep=lambda state: logger.warning(
            "Transient error: %r. Retrying in %.0fs (attempt %d/%d)...",
            state.outcome.exception(),
            state.next_action.sleep,
            state.attempt_number,
            retries,
        ),
    )
    def _invoke():
        return fn()

    return _invoke()
