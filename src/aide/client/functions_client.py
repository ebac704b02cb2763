"""Client for the serverless functions: chat stream, title generation, account deletion, speech."""

from __future__ import annotations

from typing import Any, AsyncIterator

import httpx

from aide.errors import (
    AuthenticationRequired,
    NetworkOrServerError,
    PaymentRequired,
    RateLimited,
)
from aide.util.config import ClientConfig


class FunctionsClient:
    """Client for the bearer-authenticated function endpoints."""

    def __init__(self, config: ClientConfig, http: httpx.AsyncClient | None = None):
        """Initialize the functions client.

        Args:
            config: Client configuration (functions URL, anon key)
            http: Shared async HTTP client (created if omitted)
        """
        self.base_url = config.resolved_functions_url
        self.api_key = config.anon_key
        self._http = http or httpx.AsyncClient(timeout=httpx.Timeout(config.timeout, read=None))
        self._owns_http = http is None

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    def _url(self, name: str) -> str:
        """Build full URL for a function."""
        return f"{self.base_url}/{name}"

    def _headers(self, access_token: str) -> dict[str, str]:
        if not access_token:
            raise AuthenticationRequired("Function calls require an access token")
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def _post_json(self, name: str, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._http.post(self._url(name), headers=self._headers(access_token), json=body)
        except httpx.HTTPError as e:
            raise NetworkOrServerError(f"{name} request failed: {e}") from e
        _raise_for_status(name, resp)
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkOrServerError(
                f"{name} returned a body that is not JSON: {e}", status_code=resp.status_code
            ) from e
        if not isinstance(data, dict):
            raise NetworkOrServerError(
                f"{name} returned {type(data).__name__}, expected an object", status_code=resp.status_code
            )
        return data

    async def stream_chat(self, messages: list[dict[str, str]], access_token: str) -> AsyncIterator[bytes]:
        """Stream the completion for a conversation history.

        Args:
            messages: Full history as [{role, content}]
            access_token: Bearer token of the signed-in identity

        Yields:
            Raw chunks of the `data: {json}` event stream

        Raises:
            RateLimited: On HTTP 429
            PaymentRequired: On HTTP 402
            NetworkOrServerError: On any other non-2xx status or transport failure
        """
        headers = self._headers(access_token)
        try:
            async with self._http.stream(
                "POST", self._url("chat"), headers=headers, json={"messages": messages}
            ) as response:
                if response.status_code >= 300:
                    await response.aread()
                    _raise_for_status("chat", response)
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as e:
            raise NetworkOrServerError(f"chat stream failed: {e}") from e

    async def generate_title(self, first_message: str, conversation_id: str, access_token: str) -> str | None:
        """Ask the title function to name a conversation; it stores the title itself."""
        data = await self._post_json(
            "generate-title",
            access_token,
            {"firstMessage": first_message, "conversationId": conversation_id},
        )
        return data.get("title")

    async def delete_account(self, access_token: str) -> None:
        """Delete the identity and every row it owns."""
        await self._post_json("delete-account", access_token, {})

    async def text_to_speech(self, text: str, voice_id: str, access_token: str) -> bytes:
        """Synthesize speech and return the audio bytes."""
        try:
            resp = await self._http.post(
                self._url("elevenlabs-tts"),
                headers=self._headers(access_token),
                json={"text": text, "voiceId": voice_id},
            )
        except httpx.HTTPError as e:
            raise NetworkOrServerError(f"text-to-speech request failed: {e}") from e
        _raise_for_status("text-to-speech", resp)
        return resp.content


def _raise_for_status(name: str, resp: httpx.Response) -> None:
    if resp.status_code < 300:
        return
    if resp.status_code == 429:
        raise RateLimited("Rate limit exceeded. Please try again in a moment.")
    if resp.status_code == 402:
        raise PaymentRequired("Payment required. Please add credits to continue.")
    if resp.status_code == 401:
        raise AuthenticationRequired(f"{name} rejected the access token")
    raise NetworkOrServerError(f"{name} failed with HTTP {resp.status_code}", status_code=resp.status_code)
