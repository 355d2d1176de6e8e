"""Provider adapters — each turns (credential, model, prompt) into a stream of text fragments.

Gemini and OpenRouter are spoken to directly over SSE with httpx; Anthropic
goes through LangChain's ChatAnthropic. Every adapter raises ProviderError
for upstream failures so the gateway can tell rate limits from other errors.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

import httpx

from canvaspilot.llm.prompts import MODEL_ACK, Prompt
from canvaspilot.streaming.jsonscan import try_parse_json

if TYPE_CHECKING:
    from canvaspilot.config import Settings

logger = logging.getLogger(__name__)

_RATE_SIGNALS = ("rate", "quota", "429", "resource_exhausted")

MAX_OUTPUT_TOKENS = 4096
TEMPERATURE = 0.7


class ProviderError(Exception):
    def __init__(self, provider: str, status: int | None, message: str) -> None:
        super().__init__(f"{provider} ({status if status is not None else 'no status'}): {message}")
        self.provider = provider
        self.status = status
        self.message = message

    @property
    def is_rate_limited(self) -> bool:
        if self.status == 429:
            return True
        lowered = self.message.lower()
        return any(signal in lowered for signal in _RATE_SIGNALS)


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[Any]:
    """Decoded JSON of each ``data:`` line until the ``[DONE]`` sentinel."""
    async for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if data == "[DONE]":
            return
        result = try_parse_json(data, repair=False)
        if not result.ok:
            logger.debug("Skipping malformed SSE line: %s", result.error)
            continue
        yield result.value


class Provider:
    """A named upstream with an ordered credential list and an ordered model list."""

    name = "provider"

    def __init__(self, credentials: list[str], models: list[str]) -> None:
        self.credentials = list(credentials)
        self.models = list(models)

    @property
    def configured(self) -> bool:
        return bool(self.credentials and self.models)

    def stream_text(self, credential: str, model: str, prompt: Prompt, timeout_s: float) -> AsyncIterator[str]:
        raise NotImplementedError


ClientFactory = Callable[[float], httpx.AsyncClient]


def _default_client(timeout_s: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))


class SSEProvider(Provider):
    """Shared POST-and-read-SSE plumbing; subclasses build the request and pick out the text."""

    def __init__(
        self,
        credentials: list[str],
        models: list[str],
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__(credentials, models)
        self._client_factory = client_factory or _default_client

    def build_request(self, credential: str, model: str, prompt: Prompt) -> tuple[str, dict, dict, dict]:
        """(url, params, headers, json body)"""
        raise NotImplementedError

    def extract_text(self, payload: Any) -> str:
        raise NotImplementedError

    def extract_error(self, payload: Any) -> ProviderError | None:
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            err = payload["error"]
            code = err.get("code")
            status = code if isinstance(code, int) else None
            message = str(err.get("message") or err.get("status") or err)
            return ProviderError(self.name, status, message)
        return None

    async def stream_text(self, credential: str, model: str, prompt: Prompt, timeout_s: float) -> AsyncIterator[str]:
        url, params, headers, body = self.build_request(credential, model, prompt)
        try:
            async with self._client_factory(timeout_s) as client:
                async with client.stream("POST", url, params=params, headers=headers, json=body) as resp:
                    if resp.status_code >= 400:
                        detail = (await resp.aread()).decode("utf-8", errors="replace")
                        raise ProviderError(self.name, resp.status_code, detail[:500])
                    async for payload in iter_sse_data(resp.aiter_lines()):
                        error = self.extract_error(payload)
                        if error is not None:
                            raise error
                        text = self.extract_text(payload)
                        if text:
                            yield text
        except httpx.HTTPError as e:
            raise ProviderError(self.name, None, f"{type(e).__name__}: {e}") from e


class GeminiProvider(SSEProvider):
    name = "gemini"
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def build_request(self, credential: str, model: str, prompt: Prompt) -> tuple[str, dict, dict, dict]:
        url = f"{self.BASE_URL}/models/{model}:streamGenerateContent"
        body = {
            "contents": [
                {"role": "user", "parts": [{"text": prompt.system}]},
                {"role": "model", "parts": [{"text": MODEL_ACK}]},
                {"role": "user", "parts": [{"text": prompt.user}]},
            ],
            "generationConfig": {
                "temperature": TEMPERATURE,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
                "responseMimeType": "application/json",
            },
        }
        return url, {"key": credential, "alt": "sse"}, {"Content-Type": "application/json"}, body

    def extract_text(self, payload: Any) -> str:
        try:
            return payload["candidates"][0]["content"]["parts"][0].get("text") or ""
        except (KeyError, IndexError, TypeError, AttributeError):
            return ""


class OpenRouterProvider(SSEProvider):
    name = "openrouter"
    BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        credentials: list[str],
        models: list[str],
        *,
        referer: str = "http://localhost:3000",
        title: str = "canvaspilot",
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__(credentials, models, client_factory=client_factory)
        self.referer = referer
        self.title = title

    def build_request(self, credential: str, model: str, prompt: Prompt) -> tuple[str, dict, dict, dict]:
        headers = {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }
        body = {
            "model": model,
            "messages": [
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            "max_tokens": MAX_OUTPUT_TOKENS,
            "temperature": TEMPERATURE,
            "stream": True,
        }
        return f"{self.BASE_URL}/chat/completions", {}, headers, body

    def extract_text(self, payload: Any) -> str:
        try:
            return payload["choices"][0]["delta"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError):
            return ""


class AnthropicProvider(Provider):
    name = "anthropic"

    async def stream_text(self, credential: str, model: str, prompt: Prompt, timeout_s: float) -> AsyncIterator[str]:
        from langchain_anthropic import ChatAnthropic
        from langchain_core.messages import HumanMessage, SystemMessage

        llm = ChatAnthropic(
            model=model,
            api_key=credential,
            max_tokens=MAX_OUTPUT_TOKENS,
            temperature=TEMPERATURE,
            timeout=timeout_s,
            max_retries=0,
        )
        messages = [SystemMessage(content=prompt.system), HumanMessage(content=prompt.user)]

        try:
            async for chunk in llm.astream(messages):
                if isinstance(chunk.content, str):
                    if chunk.content:
                        yield chunk.content
                    continue
                for block in chunk.content:
                    if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                        yield block["text"]
        except Exception as e:
            # SDK errors carry the HTTP status on the exception
            raise ProviderError(self.name, getattr(e, "status_code", None), str(e)) from e


def build_providers(settings: Settings, *, client_factory: ClientFactory | None = None) -> list[Provider]:
    """Gemini first, OpenRouter as fallback, Anthropic last when a key is configured."""
    providers: list[Provider] = [
        GeminiProvider(settings.credentials("gemini"), settings.gemini_models, client_factory=client_factory),
        OpenRouterProvider(
            settings.credentials("openrouter"),
            settings.openrouter_models,
            referer=settings.openrouter_referer,
            title=settings.openrouter_title,
            client_factory=client_factory,
        ),
    ]
    anthropic_keys = settings.credentials("anthropic")
    if anthropic_keys:
        providers.append(AnthropicProvider(anthropic_keys, [settings.anthropic_model]))
    return providers
