"""Structured model caller — prompt in, validated payload out."""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from itertools import repeat
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from rac.errors import PayloadParseError, SchemaValidationError
from rac.llm.oracle import OracleOptions
from rac.utils.cache import ResponseCache, make_cache_key
from rac.utils.parsing import extract_json_payload

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_BATCH_CONCURRENCY = 3


def _field_paths(exc: ValidationError) -> list[str]:
    paths = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error["loc"]) or "<root>"
        if path not in paths:
            paths.append(path)
    return paths


class StructuredCaller:
    """Wraps an oracle with caching, JSON extraction and schema validation.

    ``options`` arguments accept either a full ``OracleOptions`` or a dict of
    overrides (``temperature``, ``max_tokens``, ``model``, ``timeout``) that is
    applied on top of the caller's defaults.
    """

    def __init__(
        self,
        oracle,
        defaults: OracleOptions,
        cache: ResponseCache | None = None,
        batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ):
        self.oracle = oracle
        self.defaults = defaults
        self.cache = cache
        self.batch_concurrency = batch_concurrency

    def with_defaults(self, **overrides) -> "StructuredCaller":
        """A caller sharing this one's oracle and cache, with overridden default options."""
        return StructuredCaller(
            self.oracle,
            self.defaults.merged(**overrides),
            cache=self.cache,
            batch_concurrency=self.batch_concurrency,
        )

    def _resolve(self, options: OracleOptions | dict | None) -> OracleOptions:
        if options is None:
            return self.defaults
        if isinstance(options, OracleOptions):
            return options
        return self.defaults.merged(**options)

    def call(self, prompt: str, options: OracleOptions | dict | None = None) -> str:
        """Send the prompt to the oracle and return its raw text."""
        opts = self._resolve(options)

        key = None
        if self.cache is not None:
            key = make_cache_key(prompt, opts.model, opts.temperature, opts.max_tokens)
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for prompt (%d chars)", len(prompt))
                return cached

        text = self.oracle.generate(prompt, opts)

        if key is not None:
            self.cache.set(key, text)
        return text

    def call_structured(
        self,
        prompt: str,
        schema: type[T],
        options: OracleOptions | dict | None = None,
    ) -> T:
        """Call the oracle and validate the JSON embedded in its answer against ``schema``."""
        raw = self.call(prompt, options)
        payload = extract_json_payload(raw)

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            logger.debug("Unparseable LLM payload: %s", payload[:1000])
            raise PayloadParseError(
                f"Failed to parse LLM response as JSON: {exc.msg} "
                f"(line {exc.lineno}, column {exc.colno})",
                payload=payload,
            ) from exc

        try:
            return schema.model_validate(data)
        except ValidationError as exc:
            raise SchemaValidationError(
                schema.__name__,
                _field_paths(exc),
                details=f"{exc.error_count()} error(s)",
            ) from exc

    def batch_call(
        self,
        prompts: list[str],
        options: OracleOptions | dict | None = None,
        concurrency: int | None = None,
    ) -> list[str]:
        """Run prompts in fixed-size concurrent windows; results keep input order."""
        concurrency = self.batch_concurrency if concurrency is None else concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        opts = self._resolve(options)

        results: list[str] = []
        for start in range(0, len(prompts), concurrency):
            window = prompts[start:start + concurrency]
            with ThreadPoolExecutor(max_workers=len(window)) as executor:
                results.extend(executor.map(self.call, window, repeat(opts)))
        return results
