"""OpenRouter chat adapter — implements the ChatProvider interface.

Every pipeline LLM call (intent classification, structured intent
extraction, SQL generation, composition) is a single non-streaming
``/chat/completions`` request made through ``complete``.
"""

import logging

import httpx

from semantic_query.application.interfaces.chat_provider import ChatProvider
from semantic_query.domain.entities import (
    ChatMessage,
    ChatCompletionResult,
    TokenUsage,
)
from semantic_query.domain.exceptions import ChatProviderError
from semantic_query.infrastructure.openrouter.openrouter_transport import (
    DEFAULT_APP_NAME,
    DEFAULT_BASE_URL,
    OpenRouterTransport,
)

logger = logging.getLogger(__name__)


class OpenRouterClient(ChatProvider):
    """Infrastructure adapter — connects to the OpenRouter API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        app_name: str = DEFAULT_APP_NAME,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._transport = OpenRouterTransport(api_key, base_url, app_name, http_client)

    @property
    def provider_name(self) -> str:
        return "openrouter"

    async def complete(
        self,
        messages: list[ChatMessage],
        model: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletionResult:
        payload: dict = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        response = await self._transport.post(
            "chat/completions", payload, self._transport_error
        )
        if response.status_code != 200:
            raise self._status_error(response)

        result = self._parse_completion(response.json())
        logger.debug(
            "OpenRouter completion model=%s tokens=%d cost=%s",
            result.model, result.usage.total_tokens, result.usage.cost,
        )
        return result

    def _transport_error(self, error: httpx.HTTPError) -> ChatProviderError:
        return ChatProviderError(self.provider_name, 503, f"Request failed: {error}")

    def _status_error(self, response: httpx.Response) -> ChatProviderError:
        try:
            message = response.json().get("error", {}).get("message", response.text)
        except ValueError:
            message = response.text
        return ChatProviderError(self.provider_name, response.status_code, message)

    def _parse_completion(self, data: dict) -> ChatCompletionResult:
        # OpenRouter can report an upstream failure with status 200
        if "error" in data:
            error = data["error"]
            raise ChatProviderError(
                self.provider_name,
                error.get("code", 500),
                error.get("message", "Unknown error"),
            )

        choices = data.get("choices") or []
        if not choices:
            raise ChatProviderError(self.provider_name, 500, "No choices in response")

        choice = choices[0]
        usage = data.get("usage", {})
        return ChatCompletionResult(
            model=data.get("model", ""),
            content=(choice.get("message") or {}).get("content") or "",
            finish_reason=choice.get("finish_reason") or "stop",
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
                cost=usage.get("cost"),
            ),
            provider=self.provider_name,
        )
