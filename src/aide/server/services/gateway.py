"""Client for the OpenAI-compatible AI completion gateway."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from aide.errors import NetworkOrServerError
from aide.server.state import ServerConfig, get_http_client, get_server_config

logger = logging.getLogger(__name__)


class GatewayClient:
    """Chat completions, streamed or whole, through the configured gateway."""

    def __init__(self, config: ServerConfig, http: httpx.AsyncClient):
        self.config = config
        self._http = http

    def _headers(self) -> dict[str, str]:
        if not self.config.gateway_key:
            raise NetworkOrServerError("Gateway key is not configured")
        return {
            "Authorization": f"Bearer {self.config.gateway_key}",
            "Content-Type": "application/json",
        }

    async def open_stream(self, messages: list[dict[str, str]], model: str | None = None) -> httpx.Response:
        """Start a streamed completion and return the open response.

        The caller reads it with `aiter_bytes()` and must `aclose()` it.

        Raises:
            NetworkOrServerError: With the gateway's status on a non-2xx answer
        """
        request = self._http.build_request(
            "POST",
            self.config.gateway_url,
            headers=self._headers(),
            json={"model": model or self.config.chat_model, "messages": messages, "stream": True},
        )
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise NetworkOrServerError(f"Gateway request failed: {e}") from e

        if response.status_code >= 300:
            body = await response.aread()
            await response.aclose()
            logger.error("AI gateway error: %s %s", response.status_code, body[:200])
            raise NetworkOrServerError(
                f"Gateway returned HTTP {response.status_code}", status_code=response.status_code
            )
        return response

    async def complete(self, messages: list[dict[str, str]], model: str | None = None) -> str | None:
        """Run a non-streamed completion and return the message content."""
        try:
            response = await self._http.post(
                self.config.gateway_url,
                headers=self._headers(),
                json={"model": model or self.config.chat_model, "messages": messages},
            )
        except httpx.HTTPError as e:
            raise NetworkOrServerError(f"Gateway request failed: {e}") from e
        if response.status_code >= 300:
            raise NetworkOrServerError(
                f"Gateway returned HTTP {response.status_code}", status_code=response.status_code
            )
        return _message_content(response.json())


def _message_content(data: Any) -> str | None:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


def get_gateway() -> GatewayClient:
    return GatewayClient(get_server_config(), get_http_client())
