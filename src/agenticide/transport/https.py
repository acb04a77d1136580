"""Chat APIs over HTTP(S).

One POST per turn. The request body carries the model, the most recent
history turns, the user message, max_tokens and temperature. Two hosted
dialects are supported:

- OpenAI chat completions: bearer auth, reply in choices[0].message.content
- Anthropic messages: x-api-key + anthropic-version, reply in content[0].text

Local model servers speak plain HTTP without credentials:

- Ollama generate API: prompt + system, reply in response
- LM Studio: OpenAI-compatible chat completions

Both local servers publish a model list, which `list_local_models` uses to
tell whether one is running.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import TransportError
from ..models import TransportKind
from .base import TransportRequest

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_HISTORY_WINDOW = 10
DEFAULT_HTTP_TIMEOUT = 60.0

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

OLLAMA_BASE_URL = "http://localhost:11434"
LMSTUDIO_BASE_URL = "http://localhost:1234"
LOCAL_SYSTEM_PROMPT = "You are a helpful coding assistant."
MODEL_LIST_TIMEOUT = 3.0


class ApiDialect:
    """Request/response shape of one chat API."""

    name = "generic"
    url = ""
    # Local servers only
    endpoint = ""
    models_path = ""

    def headers(self, api_key: str) -> dict[str, str]:
        raise NotImplementedError

    def body(
        self,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        return {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

    def extract(self, data: Any) -> str:
        raise NotImplementedError

    def model_names(self, data: Any) -> list[str]:
        raise NotImplementedError


class OpenAIDialect(ApiDialect):
    name = "openai"
    url = OPENAI_URL

    def headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def extract(self, data: Any) -> str:
        content = data["choices"][0]["message"]["content"]
        if not isinstance(content, str):
            raise TypeError("choices[0].message.content is not a string")
        return content


class AnthropicDialect(ApiDialect):
    name = "anthropic"
    url = ANTHROPIC_URL

    def headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def extract(self, data: Any) -> str:
        text = data["content"][0]["text"]
        if not isinstance(text, str):
            raise TypeError("content[0].text is not a string")
        return text


class OllamaDialect(ApiDialect):
    """Ollama's generate API; stateless, so earlier turns are not sent."""

    name = "ollama"
    endpoint = "/api/generate"
    models_path = "/api/tags"
    url = OLLAMA_BASE_URL + endpoint

    def headers(self, api_key: str) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def body(
        self,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        return {
            "model": model,
            "prompt": messages[-1]["content"],
            "system": LOCAL_SYSTEM_PROMPT,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }

    def extract(self, data: Any) -> str:
        text = data["response"]
        if not isinstance(text, str):
            raise TypeError("response is not a string")
        return text

    def model_names(self, data: Any) -> list[str]:
        return [m["name"] for m in data["models"]]


class LMStudioDialect(OpenAIDialect):
    name = "lmstudio"
    endpoint = "/v1/chat/completions"
    models_path = "/v1/models"
    url = LMSTUDIO_BASE_URL + endpoint

    def headers(self, api_key: str) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def model_names(self, data: Any) -> list[str]:
        return [m["id"] for m in data["data"]]


DIALECTS: dict[str, ApiDialect] = {
    OpenAIDialect.name: OpenAIDialect(),
    AnthropicDialect.name: AnthropicDialect(),
    OllamaDialect.name: OllamaDialect(),
    LMStudioDialect.name: LMStudioDialect(),
}


async def list_local_models(
    client: httpx.AsyncClient,
    dialect: ApiDialect,
    base_url: str,
    *,
    timeout: float = MODEL_LIST_TIMEOUT,
) -> list[str]:
    """Ask a local model server which models it serves.

    Raises:
        TransportError: The server is unreachable or the list is unreadable
    """
    url = base_url.rstrip("/") + dialect.models_path
    try:
        response = await client.get(url, timeout=timeout)
        response.raise_for_status()
        return dialect.model_names(response.json())
    except httpx.HTTPError as e:
        raise TransportError(f"{dialect.name} server at {base_url} is not reachable: {e}") from e
    except (ValueError, KeyError, TypeError) as e:
        raise TransportError(f"Unexpected {dialect.name} model list from {url}: {e}") from e


class HttpsTransport:
    """Transport to a hosted chat API or a local model server.

    Pass `client` to share an httpx.AsyncClient (or to inject one built on
    httpx.MockTransport in tests); a client the transport creates itself is
    closed by `close()`.
    """

    kind = TransportKind.API

    def __init__(
        self,
        dialect: ApiDialect | str,
        *,
        api_key: str = "",
        model: str,
        provider_id: str,
        url: str | None = None,
        client: httpx.AsyncClient | None = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.dialect = DIALECTS[dialect] if isinstance(dialect, str) else dialect
        self.api_key = api_key
        self.model = model
        self.provider_id = provider_id
        self.url = url or self.dialect.url
        self.history_window = history_window
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    def build_body(self, request: TransportRequest) -> dict[str, Any]:
        history = request.history[-self.history_window :] if self.history_window > 0 else []
        messages = [*history, {"role": "user", "content": request.prompt}]
        return self.dialect.body(
            self.model,
            messages,
            request.max_tokens if request.max_tokens is not None else DEFAULT_MAX_TOKENS,
            request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
        )

    async def send(self, request: TransportRequest) -> str:
        try:
            response = await self._client.post(
                self.url,
                json=self.build_body(request),
                headers=self.dialect.headers(self.api_key),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{self.dialect.name} API returned {e.response.status_code}: "
                f"{e.response.text[:200]}",
                provider_id=self.provider_id,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"{self.dialect.name} API request failed: {e}", provider_id=self.provider_id
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"{self.dialect.name} API returned a non-JSON body", provider_id=self.provider_id
            ) from e

        try:
            text = self.dialect.extract(data)
        except (KeyError, IndexError, TypeError) as e:
            raise TransportError(
                f"Unexpected {self.dialect.name} API response: {e}", provider_id=self.provider_id
            ) from e

        logger.debug(f"{self.provider_id} ({self.model}) answered with {len(text)} chars")
        return text

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "ANTHROPIC_URL",
    "LMSTUDIO_BASE_URL",
    "OLLAMA_BASE_URL",
    "OPENAI_URL",
    "AnthropicDialect",
    "ApiDialect",
    "HttpsTransport",
    "LMStudioDialect",
    "OllamaDialect",
    "OpenAIDialect",
    "list_local_models",
]
