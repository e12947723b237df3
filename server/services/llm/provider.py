"""Model provider interface. Gemini primary; any OpenAI-compatible endpoint as a custom provider."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Union

import httpx

logger = logging.getLogger("kalexam.llm")

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
CUSTOM_SYSTEM_PROMPT = (
    "You are an exam preparation assistant. Answer from the provided study material, "
    "concisely and in exam-ready language."
)

ERROR_CODES = ("missing_api_key", "request_failed", "empty_response", "unknown_provider_error")


@dataclass
class ProviderError(Exception):
    """Structured error from a model provider. Never expose raw tracebacks."""
    code: str  # missing_api_key | request_failed | empty_response | unknown_provider_error
    message: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


def classify_provider_error(error: BaseException) -> str:
    """Map any provider failure to one of ERROR_CODES. Structured code first, then message patterns."""
    code = str(getattr(error, "code", "") or "")
    if code in ("missing_api_key", "request_failed", "empty_response"):
        return code

    message = str(error).lower()
    if "missing" in message and "api" in message:
        return "missing_api_key"
    if "empty response" in message:
        return "empty_response"
    if "request failed" in message or "status" in message:
        return "request_failed"
    return "unknown_provider_error"


class ModelProvider(ABC):
    """Abstract provider for text generation."""

    name: str = "base"

    @abstractmethod
    async def generate(self, prompt: str, model_name: str) -> str:
        """Full completion text. Raises ProviderError; never returns empty text."""
        ...

    @abstractmethod
    def stream(self, prompt: str, model_name: str) -> AsyncIterator[str]:
        """Yield non-empty text deltas. Raises ProviderError if nothing was produced."""
        ...


def parse_sse_line(raw: str) -> Optional[Any]:
    """Decoded JSON of one `data:` line of a server-sent-event stream; None for [DONE] and garbage."""
    line = raw.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        return None


def gemini_text(payload: Any, sep: str = "\n") -> str:
    """Text of candidates[0].content.parts[]."""
    if not isinstance(payload, dict):
        return ""
    candidates = payload.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return sep.join(str(p.get("text") or "") for p in parts if isinstance(p, dict))


def chat_completion_text(payload: Any, streaming: bool = False) -> str:
    """choices[0].message.content, or choices[0].delta.content for stream chunks."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    block = choices[0].get("delta" if streaming else "message") or {}
    return str(block.get("content") or "")


class _HttpProvider(ModelProvider):
    """Shared request/stream plumbing. Subclasses build URLs, payloads and parse bodies."""

    label = "Provider"

    def __init__(self, timeout_s: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout_s = timeout_s
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport)

    def _request_failed(self, detail: str, **details: Any) -> ProviderError:
        return ProviderError(
            code="request_failed",
            message=f"{self.label} request failed: {detail}",
            details=details or None,
        )

    def _empty_response(self) -> ProviderError:
        return ProviderError(code="empty_response", message=f"{self.label} returned empty response")

    async def _post_json(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Any:
        try:
            async with self._client() as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise self._request_failed("timed out", error=str(e))
        except httpx.HTTPError as e:
            raise self._request_failed("transport error", error=str(e))
        if resp.status_code != 200:
            raise self._request_failed(
                f"{resp.status_code} {resp.text[:200]}",
                status=resp.status_code,
            )
        try:
            return resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise self._request_failed("invalid JSON body", error=str(e))

    async def _stream_payloads(
        self, url: str, payload: Dict[str, Any], headers: Dict[str, str]
    ) -> AsyncIterator[Any]:
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=payload, headers=headers) as resp:
                    if resp.status_code != 200:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        raise self._request_failed(f"{resp.status_code} {body[:200]}", status=resp.status_code)
                    async for line in resp.aiter_lines():
                        item = parse_sse_line(line)
                        if item is not None:
                            yield item
        except httpx.TimeoutException as e:
            raise self._request_failed("timed out", error=str(e))
        except httpx.HTTPError as e:
            raise self._request_failed("transport error", error=str(e))


class GeminiProvider(_HttpProvider):
    """Google Gemini REST API (generateContent / streamGenerateContent)."""

    label = "Gemini"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = GEMINI_BASE_URL,
        timeout_s: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout_s=timeout_s, transport=transport)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.name = "gemini"

    def _require_key(self) -> str:
        if not self.api_key:
            raise ProviderError(code="missing_api_key", message="Missing GEMINI_API_KEY")
        return self.api_key

    @staticmethod
    def _payload(prompt: str) -> Dict[str, Any]:
        return {"contents": [{"parts": [{"text": prompt}]}]}

    async def generate(self, prompt: str, model_name: str) -> str:
        key = self._require_key()
        url = f"{self.base_url}/models/{model_name}:generateContent?key={key}"
        data = await self._post_json(url, self._payload(prompt), {"Content-Type": "application/json"})
        text = gemini_text(data)
        if not text.strip():
            raise self._empty_response()
        return text

    async def stream(self, prompt: str, model_name: str) -> AsyncIterator[str]:
        key = self._require_key()
        url = f"{self.base_url}/models/{model_name}:streamGenerateContent?alt=sse&key={key}"
        combined = ""
        async for payload in self._stream_payloads(url, self._payload(prompt), {"Content-Type": "application/json"}):
            chunk = gemini_text(payload, sep="")
            if not chunk:
                continue
            combined += chunk
            yield chunk
        if not combined.strip():
            raise self._empty_response()


class OpenAICompatibleProvider(_HttpProvider):
    """Bring-your-own endpoint speaking the OpenAI /chat/completions protocol."""

    label = "Custom provider"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        temperature: float = 0.2,
    ):
        super().__init__(timeout_s=timeout_s, transport=transport)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.name = "custom"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(self, prompt: str, model_name: str, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model_name,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": CUSTOM_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        if stream:
            payload["stream"] = True
        return payload

    async def generate(self, prompt: str, model_name: str) -> str:
        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            self._payload(prompt, model_name, stream=False),
            self._headers(),
        )
        text = chat_completion_text(data)
        if not text.strip():
            raise self._empty_response()
        return text

    async def stream(self, prompt: str, model_name: str) -> AsyncIterator[str]:
        combined = ""
        async for payload in self._stream_payloads(
            f"{self.base_url}/chat/completions",
            self._payload(prompt, model_name, stream=True),
            self._headers(),
        ):
            chunk = chat_completion_text(payload, streaming=True)
            if not chunk:
                continue
            combined += chunk
            yield chunk
        if not combined.strip():
            raise self._empty_response()


Output = Union[str, Callable[[str], str]]


class FakeProvider(ModelProvider):
    """
    Test double: canned text (or a prompt -> text callable) per model name.

    errors[model] is raised instead of answering; `default` answers models
    without an entry. Every call is recorded in `calls` as (model, prompt).
    """

    def __init__(
        self,
        outputs: Optional[Dict[str, Output]] = None,
        errors: Optional[Dict[str, BaseException]] = None,
        default: Optional[Output] = None,
        chunk_size: int = 16,
        fail_after_chunks: int = 0,
    ):
        self.outputs = outputs or {}
        self.errors = errors or {}
        self.default = default
        self.chunk_size = chunk_size
        self.fail_after_chunks = fail_after_chunks
        self.calls: List[Tuple[str, str]] = []
        self.name = "fake"

    def _text(self, prompt: str, model_name: str) -> str:
        output = self.outputs.get(model_name, self.default)
        if output is None:
            return ""
        return output(prompt) if callable(output) else output

    async def generate(self, prompt: str, model_name: str) -> str:
        self.calls.append((model_name, prompt))
        if model_name in self.errors:
            raise self.errors[model_name]
        text = self._text(prompt, model_name)
        if not text.strip():
            raise ProviderError(code="empty_response", message="Fake returned empty response")
        return text

    async def stream(self, prompt: str, model_name: str) -> AsyncIterator[str]:
        self.calls.append((model_name, prompt))
        text = self._text(prompt, model_name)
        pieces = [text[i:i + self.chunk_size] for i in range(0, len(text), self.chunk_size)]
        if model_name in self.errors:
            # errors may surface mid-stream, after some deltas went out
            for piece in pieces[: self.fail_after_chunks]:
                yield piece
            raise self.errors[model_name]
        if not text.strip():
            raise ProviderError(code="empty_response", message="Fake returned empty response")
        for piece in pieces:
            yield piece
