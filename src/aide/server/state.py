"""Server state management."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass

import httpx

from aide.util.config import DEFAULT_BACKEND_URL, ClientConfig

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
DEFAULT_CHAT_MODEL = "openai/gpt-5"
DEFAULT_TITLE_MODEL = "google/gemini-2.5-flash-lite"


@dataclass
class ServerConfig:
    """Secrets and endpoints the functions need; read from AIDE_* variables."""

    backend_url: str = DEFAULT_BACKEND_URL
    anon_key: str = ""
    service_role_key: str = ""
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_key: str = ""
    chat_model: str = DEFAULT_CHAT_MODEL
    title_model: str = DEFAULT_TITLE_MODEL
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> "ServerConfig":
        env = os.environ
        return cls(
            backend_url=env.get("AIDE_BACKEND_URL", DEFAULT_BACKEND_URL),
            anon_key=env.get("AIDE_ANON_KEY", ""),
            service_role_key=env.get("AIDE_SERVICE_ROLE_KEY", ""),
            gateway_url=env.get("AIDE_GATEWAY_URL", DEFAULT_GATEWAY_URL),
            gateway_key=env.get("AIDE_GATEWAY_KEY", ""),
            chat_model=env.get("AIDE_CHAT_MODEL", DEFAULT_CHAT_MODEL),
            title_model=env.get("AIDE_TITLE_MODEL", DEFAULT_TITLE_MODEL),
        )

    @property
    def client_config(self) -> ClientConfig:
        """Configuration for talking to the auth and data APIs."""
        return ClientConfig(backend_url=self.backend_url, anon_key=self.anon_key, timeout=self.timeout)


# Track server start time for uptime calculation
_start_time: float = 0.0

# Singletons for shared state
_server_config: ServerConfig | None = None
_http_client: httpx.AsyncClient | None = None


def init_start_time() -> None:
    """Initialize the server start time."""
    global _start_time
    _start_time = time.time()


def get_uptime() -> float:
    """Get server uptime in seconds."""
    if _start_time == 0.0:
        return 0.0
    return time.time() - _start_time


def get_server_config() -> ServerConfig:
    """Get the global ServerConfig, read from the environment on first use."""
    global _server_config
    if _server_config is None:
        _server_config = ServerConfig.from_env()
    return _server_config


def get_http_client() -> httpx.AsyncClient:
    """Get the HTTP client shared by every outbound call."""
    global _http_client
    if _http_client is None:
        timeout = get_server_config().timeout
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(timeout, read=None))
    return _http_client


def configure(config: ServerConfig | None = None, http: httpx.AsyncClient | None = None) -> None:
    """Install explicit state (used by embedding code and tests)."""
    global _server_config, _http_client
    if config is not None:
        _server_config = config
    if http is not None:
        _http_client = http


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def reset_state() -> None:
    """Reset all global state (for testing)."""
    global _start_time, _server_config, _http_client
    _start_time = 0.0
    _server_config = None
    _http_client = None
