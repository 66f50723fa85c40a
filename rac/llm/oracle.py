"""Oracle transports — the text-completion backends behind the StructuredCaller.

An oracle exposes ``generate(prompt, options) -> str`` and raises only the
model errors from ``rac.errors``. Two flavours are provided:

- ``HttpOracle`` posts to an Ollama-style ``/api/generate`` endpoint.
- ``ChatModelOracle`` drives a LangChain chat model (Anthropic or Gemini).
"""

import logging
import os

import httpx
from pydantic import BaseModel, ConfigDict

from rac.errors import ModelRequestError, ModelResponseFormatError, ModelUnavailableError
from rac.utils.parsing import invoke_with_retry

logger = logging.getLogger(__name__)


class OracleOptions(BaseModel):
    """Per-call sampling and transport settings."""

    model_config = ConfigDict(frozen=True)

    model: str
    temperature: float = 0.2
    max_tokens: int = 2000
    timeout: float = 120.0

    def merged(self, **overrides) -> "OracleOptions":
        """Return a copy with every non-None override applied."""
        return self.model_copy(update={k: v for k, v in overrides.items() if v is not None})


class HttpOracle:
    """Oracle backed by a single HTTP "generate text" endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        generate_path: str = "/api/generate",
        response_field: str = "response",
        client: httpx.Client | None = None,
    ):
        self.url = base_url.rstrip("/") + generate_path
        self.response_field = response_field
        self._client = client or httpx.Client()

    def generate(self, prompt: str, options: OracleOptions) -> str:
        payload = {
            "model": options.model,
            "prompt": prompt,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": False,
        }

        def _post() -> httpx.Response:
            response = self._client.post(self.url, json=payload, timeout=options.timeout)
            response.raise_for_status()
            return response

        try:
            response = invoke_with_retry(_post)
        except httpx.HTTPStatusError as exc:
            raise ModelRequestError(exc.response.status_code, exc.response.text) from exc
        except httpx.TransportError as exc:
            raise ModelUnavailableError(f"LLM endpoint {self.url} unreachable: {exc!r}") from exc

        try:
            envelope = response.json()
        except ValueError as exc:
            raise ModelResponseFormatError("LLM response body is not JSON") from exc

        text = envelope.get(self.response_field) if isinstance(envelope, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise ModelResponseFormatError(
                f"Invalid LLM response format: missing '{self.response_field}'"
            )
        return text

    def close(self) -> None:
        self._client.close()


class ChatModelOracle:
    """Oracle backed by a LangChain chat model, built fresh for each call."""

    def __init__(self, provider: str):
        if provider not in ("anthropic", "google"):
            raise ValueError(f"Unsupported chat model provider '{provider}'")
        self.provider = provider

    def _build_llm(self, options: OracleOptions):
        if self.provider == "anthropic":
            from langchain_anthropic import ChatAnthropic

            return ChatAnthropic(
                model=options.model,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                timeout=options.timeout,
            )

        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=options.model,
            temperature=options.temperature,
            max_output_tokens=options.max_tokens,
            timeout=options.timeout,
        )

    def generate(self, prompt: str, options: OracleOptions) -> str:
        llm = self._build_llm(options)
        messages = [{"role": "user", "content": prompt}]

        try:
            response = invoke_with_retry(lambda: llm.invoke(messages))
        except Exception as exc:
            # Provider SDKs carry the HTTP status on the exception; anything
            # without one never got an answer from the service.
            status = getattr(exc, "status_code", None)
            if status is None and isinstance(exc, httpx.HTTPStatusError):
                status = exc.response.status_code
            if isinstance(status, int):
                raise ModelRequestError(status, str(exc)) from exc
            raise ModelUnavailableError(f"{self.provider} chat model unavailable: {exc!r}") from exc

        content = getattr(response, "content", None)
        if isinstance(content, list):
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        if not isinstance(content, str) or not content.strip():
            raise ModelResponseFormatError(f"{self.provider} chat model returned no text")
        return content


def build_oracle(config: dict):
    """Build the oracle named by ``oracle_provider`` in config."""
    provider = config.get("oracle_provider", "ollama")
    if provider == "ollama":
        base_url = os.getenv("OLLAMA_URL", config.get("oracle_base_url", "http://localhost:11434"))
        logger.info("Using HTTP oracle at %s", base_url)
        return HttpOracle(
            base_url,
            generate_path=config.get("oracle_generate_path", "/api/generate"),
            response_field=config.get("oracle_response_field", "response"),
        )
    logger.info("Using %s chat model oracle", provider)
    return ChatModelOracle(provider)


def default_options(config: dict) -> OracleOptions:
    """Base options from config; stages override temperature and max_tokens."""
    return OracleOptions(
        model=os.getenv("LLM_MODEL", config.get("oracle_model", "llama2")),
        timeout=config.get("oracle_timeout", 120),
    )
