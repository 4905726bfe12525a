from __future__ import annotations

import urllib.parse
from typing import Any, Final, Protocol, runtime_checkable

from loguru import logger

from ._internal.config import get_runner_api_key, get_runner_base_url
from ._internal.errors import IntrospectError, probe_unreachable_error
from ._internal.http import request_json
from .types import ProbeRequest, SamplingOverrides


@runtime_checkable
class Runner(Protocol):
    """
    Anything that can execute one generation request for a loaded model.

    `submit` returns the generated text or raises `IntrospectError` with
    `info.type` of `ParameterRejected` (the runner validated and refused the
    request) or `ProbeUnreachable` (down, timed out, or otherwise unusable).
    Retries, if any, belong inside the runner.
    """

    def submit(self, request: ProbeRequest, *, timeout_ms: int | None = None) -> str: ...


# llama-server / OpenAI-compatible field names.
_WIRE_NAMES: Final[dict[str, str]] = {
    "temperature": "temperature",
    "top_p": "top_p",
    "top_k": "top_k",
    "frequency_penalty": "frequency_penalty",
    "presence_penalty": "presence_penalty",
    "seed": "seed",
    "min_p": "min_p",
    "typical_p": "typical_p",
    "repetition_penalty": "repeat_penalty",
    "tfs_z": "tfs_z",
    "mirostat_mode": "mirostat",
    "mirostat_tau": "mirostat_tau",
    "mirostat_eta": "mirostat_eta",
}


def sampling_body(overrides: SamplingOverrides) -> dict[str, Any]:
    return {_WIRE_NAMES[k]: v for k, v in overrides.as_dict().items()}


def _first_choice_text(obj: dict[str, Any]) -> str:
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices:
        raise probe_unreachable_error("runner response has no choices", retryable=False)
    first = choices[0]
    if not isinstance(first, dict):
        raise probe_unreachable_error("runner response choice is not an object", retryable=False)
    message = first.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        return content if isinstance(content, str) else ""
    text = first.get("text")
    return text if isinstance(text, str) else ""


class OpenAICompatRunner:
    """
    Runner for servers exposing an OpenAI-compatible `/v1/chat/completions`
    (llama-server, llama-cpp-python, vLLM, LM Studio and friends).

    `base_url` is the `/v1` root, e.g. `http://127.0.0.1:8080/v1`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        default_model: str | None = None,
        proxy_url: str | None = None,
    ) -> None:
        base = (base_url or get_runner_base_url()).strip().rstrip("/")
        if not base:
            raise ValueError("base_url must be non-empty")
        self.base_url = base
        self._api_key = api_key if api_key is not None else get_runner_api_key()
        self._default_model = default_model
        self._proxy_url = proxy_url

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    def build_body(self, request: ProbeRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model or self._default_model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "max_tokens": request.max_output_tokens,
            "stream": False,
        }
        body.update(sampling_body(request.overrides))
        return body

    def submit(self, request: ProbeRequest, *, timeout_ms: int | None = None) -> str:
        obj = request_json(
            method="POST",
            url=f"{self.base_url}/chat/completions",
            headers=self._headers(),
            json_body=self.build_body(request),
            timeout_ms=timeout_ms,
            proxy_url=self._proxy_url,
        )
        return _first_choice_text(obj)

    def health_url(self) -> str:
        # llama-server serves /health at the root, not under /v1.
        parsed = urllib.parse.urlparse(self.base_url)
        path = parsed.path.rstrip("/")
        if path.lower().endswith("/v1"):
            path = path[: -len("/v1")]
        return urllib.parse.urlunparse(parsed._replace(path=f"{path}/health", query="", fragment=""))

    def health(self, *, timeout_ms: int | None = 5_000) -> bool:
        try:
            request_json(
                method="GET",
                url=self.health_url(),
                headers=self._headers(),
                timeout_ms=timeout_ms,
                proxy_url=self._proxy_url,
            )
        except IntrospectError as e:
            logger.debug("runner health check failed: {}: {}", e.info.type, e.info.message)
            return False
        return True
