"""LLM client — HTTP connection to an OpenAI-compatible chat backend.

Routes receive an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str, *, json_mode: bool = False) -> str: ...

`stage` identifies the caller (e.g. "generate", "expand_worldview") and is
used for logging only. With `json_mode` the backend is asked for a strict
JSON object; the reply is still untyped text and must go through ingestion.

Production code builds an HttpLLM per request from config plus the caller's
optional overrides (own API key, base URL, model). Tests use StubLLM
(defined in the test helpers) instead.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol
from urllib.parse import urljoin, urlsplit

import httpx

from movie_games.errors import MovieGamesError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
DEFAULT_MODEL = "glm-4.6v-flash"
DEFAULT_TIMEOUT = 240.0
MAX_TOKENS = 8192

# Upstream error code for "too many requests, try again later"
UPSTREAM_RATE_LIMIT_CODE = "1305"

SYSTEM_PROMPT = "You are a professional interactive movie game designer."
JSON_SYSTEM_PROMPT = SYSTEM_PROMPT + " Output strictly valid JSON."


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str, *, json_mode: bool = False) -> str: ...


# ---------------------------------------------------------------------------
# Endpoint and error helpers
# ---------------------------------------------------------------------------

def resolve_endpoint(base_url: str | None) -> str:
    """Full chat/completions URL for an optional caller-supplied base URL.

    A URL already naming chat/completions is used as-is; anything else has
    it joined on. Only http and https are accepted.
    """
    raw = (base_url or "").strip()
    if not raw:
        return DEFAULT_ENDPOINT
    parts = urlsplit(raw)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidBaseUrl("Invalid baseUrl")
    if "chat/completions" in raw:
        return raw
    if not raw.endswith("/"):
        raw += "/"
    return urljoin(raw, "chat/completions")


def extract_error_code(text: str) -> str | None:
    """`{"error": {"code": ...}}` → the code as a string."""
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("error"), dict):
        return None
    code = data["error"].get("code")
    if isinstance(code, bool) or code is None:
        return None
    if isinstance(code, (str, int)):
        return str(code)
    return None


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

class HttpLLM:
    """Async HTTP client for OpenAI-compatible chat/completions backends.

    Request:  POST {endpoint}  {"model", "messages": [system, user], "max_tokens", "stream": false}
    Response: {"choices": [{"message": {"content": "..."}}], "usage": {...}}

    Some backends answer 200 OK with an `error` object in the body; that is
    treated exactly like an HTTP error.

    Args:
        endpoint: Full chat/completions URL, see resolve_endpoint().
        api_key:  Bearer token. Required.
        model:    Model identifier.
        timeout:  HTTP timeout in seconds.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not api_key:
            raise MissingApiKey("No API key configured; please provide your own API key")
        self._endpoint = endpoint
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _build_body(self, prompt: str, json_mode: bool) -> dict:
        body: dict = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": JSON_SYSTEM_PROMPT if json_mode else SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": MAX_TOKENS,
            "stream": False,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    def _raise_for_error_body(self, text: str, status_code: int) -> None:
        if extract_error_code(text) == UPSTREAM_RATE_LIMIT_CODE:
            raise LLMRateLimited("The model service is rate limiting requests, please retry later")
        raise LLMError(f"LLM backend returned HTTP {status_code}: {text[:500]}")

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        choices = data.get("choices")
        if not choices or not isinstance(choices[0], dict):
            raise LLMError("No choices in LLM response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Unexpected response format from LLM backend")
        return content

    async def __call__(self, stage: str, prompt: str, *, json_mode: bool = False) -> str:
        body = self._build_body(prompt, json_mode)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, self._endpoint, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._endpoint, json=body, headers=self._headers())
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._endpoint}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        if resp.is_error:
            logger.warning("llm error stage=%s status=%d", stage, resp.status_code)
            self._raise_for_error_body(resp.text, resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON response") from e
        if isinstance(data, dict) and data.get("error") is not None:
            logger.warning("llm error body stage=%s with status %d", stage, resp.status_code)
            self._raise_for_error_body(resp.text, resp.status_code)

        text = self._parse_response(data)
        usage = data.get("usage") or {}
        logger.debug(
            "llm response stage=%s len=%d tokens=%s", stage, len(text), usage.get("total_tokens")
        )
        return text


# ---------------------------------------------------------------------------
# Errors: raised by HttpLLM for all configuration, connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(MovieGamesError):
    """Raised when the LLM backend cannot be reached or returns an error."""

    code = "LLM_ERROR"
    status_code = 502


class LLMRateLimited(LLMError):
    code = "UPSTREAM_RATE_LIMITED"
    status_code = 429


class MissingApiKey(LLMError):
    code = "API_KEY_REQUIRED"
    status_code = 400


class InvalidBaseUrl(LLMError):
    code = "INVALID_BASE_URL"
    status_code = 400
