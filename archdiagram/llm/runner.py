"""Chat-completions client for local model runtimes used by the AI renderer."""

from __future__ import annotations

import ipaddress
import json
import os
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from ..config import LLMConfig

_UNSET = object()

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1", "model-runner.docker.internal"}


class LLMError(RuntimeError):
    """The model runtime could not produce a completion."""


@dataclass
class LLMRequest:
    """One completion request as handed to a transport."""

    prompt: str
    system: Optional[str]
    model: str
    temperature: Optional[float]
    max_tokens: Optional[int]
    executable: Optional[str]
    base_url: Optional[str]
    api_key: Optional[str]
    request_timeout: Optional[float]


Transport = Callable[[LLMRequest], str]


class LLMRunner:
    """Sends prompts to a local OpenAI-compatible endpoint or the ``ollama`` CLI."""

    DEFAULT_MODEL = "ai/smollm2:360M-Q4_K_M"
    DEFAULT_BASE_URL = "http://localhost:12434/engines/v1"
    ENV_MODEL_KEYS = ("ARCHDIAGRAM_LLM_MODEL", "MODEL_RUNNER_MODEL", "OPENAI_MODEL")
    ENV_BASE_URL_KEYS = ("ARCHDIAGRAM_LLM_BASE_URL", "MODEL_RUNNER_BASE_URL", "OPENAI_BASE_URL")
    ENV_API_KEY_KEYS = ("ARCHDIAGRAM_LLM_API_KEY", "MODEL_RUNNER_API_KEY", "OPENAI_API_KEY")

    def __init__(
        self,
        model: str | None = None,
        *,
        base_url: str | None | object = _UNSET,
        executable: str = "ollama",
        temperature: Optional[float] = 0.1,
        max_tokens: Optional[int] = None,
        api_key: str | None | object = _UNSET,
        request_timeout: Optional[float] = 60.0,
        runner: Transport | None = None,
    ) -> None:
        self.model = model or _first_env(self.ENV_MODEL_KEYS) or self.DEFAULT_MODEL
        if base_url is _UNSET:
            base_url = _first_env(self.ENV_BASE_URL_KEYS) or self.DEFAULT_BASE_URL
        self.base_url = ensure_local_url(str(base_url)) if base_url else None
        self.api_key = _first_env(self.ENV_API_KEY_KEYS) if api_key is _UNSET else api_key
        self.executable = executable
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout = request_timeout
        if runner is not None:
            self._transport: Transport = runner
        elif self.base_url:
            self._transport = http_transport
        else:
            self._transport = cli_transport

    @classmethod
    def from_config(cls, config: LLMConfig | None, *, runner: Transport | None = None) -> "LLMRunner":
        config = config or LLMConfig()
        kwargs: dict[str, object] = {"runner": runner}
        if config.runner == "ollama":
            kwargs["base_url"] = None
        elif config.base_url:
            kwargs["base_url"] = config.base_url
        if config.api_key:
            kwargs["api_key"] = config.api_key
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.max_tokens is not None:
            kwargs["max_tokens"] = config.max_tokens
        if config.request_timeout is not None:
            kwargs["request_timeout"] = config.request_timeout
        return cls(config.model, **kwargs)  # type: ignore[arg-type]

    def run(self, prompt: str, *, system: str | None = None) -> str:
        request = LLMRequest(
            prompt=prompt,
            system=system,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            executable=self.executable,
            base_url=self.base_url,
            api_key=self.api_key,  # type: ignore[arg-type]
            request_timeout=self.request_timeout,
        )
        return self._transport(request)


def cli_transport(request: LLMRequest) -> str:
    args = [request.executable or "ollama", "run", request.model]
    if request.system:
        args.extend(["--system", request.system])
    args.append(request.prompt)
    try:
        completed = subprocess.run(
            args,
            check=True,
            capture_output=True,
            text=True,
            timeout=request.request_timeout,
        )
    except FileNotFoundError as exc:  # pragma: no cover - depends on environment
        raise LLMError(f"'{request.executable}' is not installed") from exc
    except subprocess.TimeoutExpired as exc:  # pragma: no cover - depends on environment
        raise LLMError(f"'{request.executable}' did not answer within {request.request_timeout}s") from exc
    except subprocess.CalledProcessError as exc:  # pragma: no cover - depends on environment
        raise LLMError(f"'{request.executable}' exited with {exc.returncode}: {exc.stderr.strip()}") from exc
    return completed.stdout.strip()


def http_transport(request: LLMRequest) -> str:
    if not request.base_url:
        raise LLMError("HTTP transport requires a base_url")
    payload: dict[str, object] = {"model": request.model, "messages": build_messages(request.system, request.prompt)}
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    if request.max_tokens is not None:
        payload["max_tokens"] = request.max_tokens
    headers = {"Content-Type": "application/json"}
    if request.api_key:
        headers["Authorization"] = f"Bearer {request.api_key}"

    http_request = Request(
        f"{request.base_url}/chat/completions",
        data=json.dumps(payload).encode("utf-8"),
        headers=headers,
        method="POST",
    )
    try:
        with urlopen(http_request, timeout=request.request_timeout or 60.0) as response:  # type: ignore[arg-type]
            raw = response.read()
    except HTTPError as exc:  # pragma: no cover - depends on runtime
        detail = exc.read().decode("utf-8", errors="ignore").strip()
        raise LLMError(f"model endpoint returned {exc.code}: {detail or exc.reason}") from exc
    except URLError as exc:  # pragma: no cover - depends on runtime
        raise LLMError(f"model endpoint unreachable: {exc.reason}") from exc

    try:
        body = json.loads(raw.decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise LLMError("model endpoint returned invalid JSON") from exc
    content = extract_content(body)
    if not content:
        raise LLMError("model endpoint returned an empty completion")
    return content.strip()


def build_messages(system: str | None, prompt: str) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": system}] if system else []
    messages.append({"role": "user", "content": prompt})
    return messages


def extract_content(payload: object) -> str:
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    first = choices[0]
    message = first.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    text = first.get("text")
    return text if isinstance(text, str) else ""


def ensure_local_url(url: str) -> str:
    """Reject base URLs that point at non-local hosts."""
    normalized = url.rstrip("/")
    host = urlparse(normalized).hostname
    if host is None or _is_local_host(host):
        return normalized
    raise LLMError(f"Remote base_url '{url}' is not permitted; point it at a local model runtime")


def _is_local_host(host: str) -> bool:
    lowered = host.lower()
    if lowered in _LOCAL_HOSTS or lowered.endswith((".local", ".localdomain")):
        return True
    try:
        return ipaddress.ip_address(lowered).is_loopback
    except ValueError:
        return False


def _first_env(keys: Sequence[str]) -> str | None:
    for key in keys:
        value = os.getenv(key)
        if value:
            return value
    return None


__all__ = ["LLMError", "LLMRequest", "LLMRunner", "ensure_local_url"]
