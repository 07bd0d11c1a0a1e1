"""Shared httpx plumbing for the OpenRouter chat and embedding adapters."""

from collections.abc import Callable
from typing import Any

import httpx

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_APP_NAME = "Semantic Query"
REQUEST_TIMEOUT_S = 120.0


class OpenRouterTransport:
    """POSTs JSON to one OpenRouter endpoint.

    An injected ``httpx.AsyncClient`` is reused across calls (shared pool);
    without one, each call opens and closes its own client.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        app_name: str = DEFAULT_APP_NAME,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._app_name = app_name
        self._http_client = http_client

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Title": self._app_name,
        }

    async def post(
        self,
        path: str,
        payload: dict[str, Any],
        on_transport_error: Callable[[httpx.HTTPError], Exception],
    ) -> httpx.Response:
        """Send the request; network failures are converted by ``on_transport_error``.

        The body is read before the client is closed, so the returned
        response is safe to inspect afterwards.
        """
        client = self._http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S)
        try:
            return await client.post(
                f"{self._base_url}/{path.lstrip('/')}", headers=self.headers, json=payload
            )
        except httpx.HTTPError as e:
            raise on_transport_error(e) from e
        finally:
            if self._http_client is None:
                await client.aclose()
