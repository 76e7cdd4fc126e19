from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .logging import get_logger
from .models import AgentConfig, ProviderType, StreamChunk, ToolSpec

LOGGER = get_logger("llm_provider")

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"
DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class LLMProviderError(Exception):
    def __init__(
        self,
        message: str,
        *,
        code: str = "provider_error",
        retryable: bool = False,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.status = status


class LLMProvider:
    def stream(
        self,
        *,
        system_prompt: str,
        prompt: str,
        tool: Optional[ToolSpec] = None,
    ) -> AsyncIterator[StreamChunk]:  # pragma: no cover - interface
        raise NotImplementedError


class MockLLMProvider(LLMProvider):
    async def stream(
        self,
        *,
        system_prompt: str,
        prompt: str,
        tool: Optional[ToolSpec] = None,
    ) -> AsyncIterator[StreamChunk]:
        if tool is not None:
            yield StreamChunk(tool_output={})
        else:
            yield StreamChunk(content="Mock response")
        yield StreamChunk(done=True)


class _HttpStreamingProvider(LLMProvider):
    """Shared request plumbing for providers speaking server-sent events."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_url: str,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        timeout_s: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    async def _sse_events(
        self, url: str, payload: Dict[str, Any], headers: Dict[str, str]
    ) -> AsyncIterator[Dict[str, Any]]:
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=payload, headers=headers) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        raise _status_error(response.status_code, body)
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:") :].strip()
                        if not data:
                            continue
                        if data == "[DONE]":
                            return
                        try:
                            event = json.loads(data)
                        except json.JSONDecodeError:
                            LOGGER.warning("sse_event_unparseable", preview=data[:120])
                            continue
                        if isinstance(event, dict):
                            yield event
        except httpx.TimeoutException as exc:
            raise LLMProviderError(
                f"request timed out: {exc}", code="timeout", retryable=True
            ) from exc
        except httpx.TransportError as exc:
            raise LLMProviderError(
                f"connection error: {exc}", code="network_error", retryable=True
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMProviderError(f"provider response error: {exc}", code="provider_error") from exc


class OpenAICompatibleProvider(_HttpStreamingProvider):
    def __init__(self, api_key: str, model: str, api_url: str = DEFAULT_OPENAI_URL, **kwargs: Any) -> None:
        super().__init__(api_key, model, api_url, **kwargs)

    def _payload(self, system_prompt: str, prompt: str, tool: Optional[ToolSpec]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "stream": True,
        }
        if self.temperature is not None and _model_supports_temperature(self.model):
            payload["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            payload["max_tokens"] = self.max_output_tokens
        if tool is not None:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
            ]
            payload["tool_choice"] = {"type": "function", "function": {"name": tool.name}}
        return payload

    async def stream(
        self,
        *,
        system_prompt: str,
        prompt: str,
        tool: Optional[ToolSpec] = None,
    ) -> AsyncIterator[StreamChunk]:
        payload = self._payload(system_prompt, prompt, tool)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.api_url}/chat/completions"
        tool_names: Dict[int, str] = {}
        tool_args: Dict[int, List[str]] = {}
        retried_without_temperature = False
        while True:
            try:
                async for event in self._sse_events(url, payload, headers):
                    for choice in _dicts(event.get("choices")):
                        delta = choice.get("delta")
                        if not isinstance(delta, dict):
                            continue
                        content = _text(delta.get("content"))
                        reasoning = _text(delta.get("reasoning_content")) or _text(delta.get("reasoning"))
                        if content or reasoning:
                            yield StreamChunk(content=content or None, reasoning=reasoning or None)
                        for call in _dicts(delta.get("tool_calls")):
                            index = call.get("index", 0)
                            function = call.get("function")
                            if not isinstance(index, int) or not isinstance(function, dict):
                                continue
                            name = _text(function.get("name"))
                            if name:
                                tool_names[index] = name
                            tool_args.setdefault(index, []).append(_text(function.get("arguments")))
                break
            except LLMProviderError as exc:
                if (
                    "temperature" in payload
                    and not retried_without_temperature
                    and exc.status == 400
                    and _is_unsupported_temperature_error(str(exc))
                ):
                    payload.pop("temperature", None)
                    retried_without_temperature = True
                    continue
                raise
        if tool is not None:
            output = _decode_tool_arguments(tool, tool_names, tool_args)
            if output is not None:
                yield StreamChunk(tool_output=output)
        yield StreamChunk(done=True)


class GeminiProvider(_HttpStreamingProvider):
    def __init__(self, api_key: str, model: str, api_url: str = DEFAULT_GEMINI_URL, **kwargs: Any) -> None:
        super().__init__(api_key, model, api_url, **kwargs)

    def _payload(self, system_prompt: str, prompt: str, tool: Optional[ToolSpec]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": system_prompt}]},
        }
        generation: Dict[str, Any] = {}
        if self.temperature is not None:
            generation["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            generation["maxOutputTokens"] = self.max_output_tokens
        if generation:
            payload["generationConfig"] = generation
        if tool is not None:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": tool.parameters,
                        }
                    ]
                }
            ]
            payload["toolConfig"] = {
                "functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": [tool.name]}
            }
        return payload

    async def stream(
        self,
        *,
        system_prompt: str,
        prompt: str,
        tool: Optional[ToolSpec] = None,
    ) -> AsyncIterator[StreamChunk]:
        url = f"{self.api_url}/models/{self.model}:streamGenerateContent?alt=sse"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        tool_output: Optional[Dict[str, Any]] = None
        async for event in self._sse_events(url, self._payload(system_prompt, prompt, tool), headers):
            for candidate in _dicts(event.get("candidates")):
                content = candidate.get("content")
                if not isinstance(content, dict):
                    continue
                for part in _dicts(content.get("parts")):
                    call = part.get("functionCall")
                    if isinstance(call, dict):
                        if tool is None or call.get("name") in (None, tool.name):
                            args = call.get("args")
                            tool_output = args if isinstance(args, dict) else {}
                        continue
                    text = _text(part.get("text"))
                    if not text:
                        continue
                    if part.get("thought"):
                        yield StreamChunk(reasoning=text)
                    else:
                        yield StreamChunk(content=text)
        if tool is not None and tool_output is not None:
            yield StreamChunk(tool_output=tool_output)
        yield StreamChunk(done=True)


def resolve_provider(
    config: AgentConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LLMProvider:
    if config.provider_type == ProviderType.mock:
        return MockLLMProvider()
    if not config.api_key:
        raise ValueError(f"an API key is required for provider {config.provider_type.value}")
    if not config.model:
        raise ValueError(f"a model is required for provider {config.provider_type.value}")
    options: Dict[str, Any] = {
        "temperature": config.temperature,
        "max_output_tokens": config.max_output_tokens,
        "timeout_s": config.timeout_s,
        "transport": transport,
    }
    if config.provider_type == ProviderType.gemini:
        return GeminiProvider(
            config.api_key, config.model, config.api_url or DEFAULT_GEMINI_URL, **options
        )
    return OpenAICompatibleProvider(
        config.api_key, config.model, config.api_url or DEFAULT_OPENAI_URL, **options
    )


def _status_error(status: int, body: str) -> LLMProviderError:
    detail = body.strip()[:500] or f"HTTP {status}"
    if status in {401, 403}:
        return LLMProviderError(f"authentication failed: {detail}", code="auth_error", status=status)
    if status == 429:
        return LLMProviderError(
            f"rate limited: {detail}", code="rate_limited", retryable=True, status=status
        )
    return LLMProviderError(
        f"provider error: {detail}",
        code="provider_error",
        retryable=status in _RETRYABLE_STATUS,
        status=status,
    )


def _dicts(value: Any) -> List[Dict[str, Any]]:
    """Object entries of a streamed list; anything else in the event is skipped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _decode_tool_arguments(
    tool: ToolSpec, names: Dict[int, str], args: Dict[int, List[str]]
) -> Optional[Dict[str, Any]]:
    for index in sorted(args):
        if names.get(index, tool.name) != tool.name:
            continue
        raw = "".join(args[index]).strip()
        if not raw:
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("tool_arguments_unparseable", tool=tool.name, preview=raw[:120])
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _model_supports_temperature(model: str) -> bool:
    normalized = (model or "").strip().lower()
    # GPT-5 and o-series reasoning models reject temperature.
    return not (normalized.startswith("gpt-5") or normalized.startswith("o1") or normalized.startswith("o3"))


def _is_unsupported_temperature_error(detail: str) -> bool:
    lowered = (detail or "").lower()
    return "unsupported" in lowered and "temperature" in lowered
