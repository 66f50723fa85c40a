"""Tests for rac.utils.parsing: extract_json_payload, invoke_with_retry."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from rac.errors import NoStructuredPayloadError
from rac.utils.parsing import _is_transient, extract_json_payload, invoke_with_retry


# --- extract_json_payload ---

class TestExtractJsonPayload:
    def test_plain_object(self):
        assert extract_json_payload('{"a": 1}') == '{"a": 1}'

    def test_object_inside_prose_and_fences(self):
        text = 'Sure! Here you go:\n```json\n{"a": {"b": [1, 2]}}\n```\nAnything else?'
        assert extract_json_payload(text) == '{"a": {"b": [1, 2]}}'

    def test_object_preferred_over_earlier_array(self):
        text = 'Items [1, 2] and then {"a": 1}'
        assert extract_json_payload(text) == '{"a": 1}'

    def test_array_when_no_object(self):
        assert extract_json_payload("result: [1, 2, 3] done") == "[1, 2, 3]"

    def test_braces_inside_strings_ignored(self):
        text = 'x {"text": "a } inside", "n": "\\"}"} trailing }'
        assert extract_json_payload(text) == '{"text": "a } inside", "n": "\\"}"}'

    def test_unclosed_object_returns_remainder(self):
        assert extract_json_payload('prefix {"a": [1, 2') == '{"a": [1, 2'

    def test_no_payload_raises(self):
        with pytest.raises(NoStructuredPayloadError, match="No valid JSON found"):
            extract_json_payload("I cannot help with that.")


# --- _is_transient ---

class TestIsTransient:
    def _status_error(self, code):
        request = httpx.Request("POST", "http://oracle.test")
        response = httpx.Response(code, request=request)
        return httpx.HTTPStatusError("boom", request=request, response=response)

    @pytest.mark.parametrize("code", [429, 500, 502, 503])
    def test_retryable_status(self, code):
        assert _is_transient(self._status_error(code))

    @pytest.mark.parametrize("code", [400, 401, 404])
    def test_client_errors_not_retryable(self, code):
        assert not _is_transient(self._status_error(code))

    def test_timeout_and_connect_errors(self):
        assert _is_transient(httpx.ReadTimeout("slow"))
        assert _is_transient(httpx.ConnectError("refused"))

    def test_other_errors(self):
        assert not _is_transient(ValueError("nope"))


# --- invoke_with_retry ---

class TestInvokeWithRetry:
    @patch("rac.config._config", {"llm_max_retries": 3, "llm_retry_multiplier": 0})
    def test_succeeds_on_first_try(self):
        fn = MagicMock(return_value="ok")
        assert invoke_with_retry(fn) == "ok"
        assert fn.call_count == 1

    @patch("rac.config._config", {"llm_max_retries": 3, "llm_retry_multiplier": 0})
    def test_retries_on_connect_error(self):
        fn = MagicMock(side_effect=[httpx.ConnectError("connection refused"), "ok"])
        assert invoke_with_retry(fn) == "ok"
        assert fn.call_count == 2

    @patch("rac.config._config", {"llm_max_retries": 2, "llm_retry_multiplier": 0})
    def test_gives_up_after_max_retries(self):
        fn = MagicMock(side_effect=httpx.ConnectError("connection refused"))
        with pytest.raises(httpx.ConnectError):
            invoke_with_retry(fn)
        assert fn.call_count == 3

    @patch("rac.config._config", {"llm_max_retries": 3, "llm_retry_multiplier": 0})
    def test_non_transient_raised_immediately(self):
        fn = MagicMock(side_effect=ValueError("bad request"))
        with pytest.raises(ValueError):
            invoke_with_retry(fn)
        assert fn.call_count == 1
