"""Application context: the capabilities every component receives at construction."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from aide.client.auth_client import AuthClient
from aide.client.data_client import DataClient
from aide.client.functions_client import FunctionsClient
from aide.services.notices import NoticeBoard
from aide.util.config import ClientConfig
from aide.util.config_manager import ConfigManager


@dataclass
class AppContext:
    """Everything identity-scoped code needs, passed explicitly instead of held globally."""

    config: ClientConfig
    state: ConfigManager
    auth: AuthClient
    data: DataClient
    functions: FunctionsClient
    notices: NoticeBoard
    http: httpx.AsyncClient

    @classmethod
    def create(
        cls,
        config: ClientConfig,
        *,
        notices: NoticeBoard | None = None,
        http: httpx.AsyncClient | None = None,
        state: ConfigManager | None = None,
    ) -> "AppContext":
        """Build a context whose clients share one HTTP connection pool."""
        http = http or httpx.AsyncClient(timeout=httpx.Timeout(config.timeout, read=None))
        state = state or ConfigManager(config.config_path)
        auth = AuthClient(config, storage=state, http=http)
        data = DataClient(config, token_provider=lambda: _access_token(auth), http=http)
        functions = FunctionsClient(config, http=http)
        return cls(
            config=config,
            state=state,
            auth=auth,
            data=data,
            functions=functions,
            notices=notices or NoticeBoard(),
            http=http,
        )

    @classmethod
    @asynccontextmanager
    async def open(cls, config: ClientConfig, **kwargs) -> AsyncIterator["AppContext"]:
        """Acquire the context at start and release it at teardown."""
        ctx = cls.create(config, **kwargs)
        try:
            yield ctx
        finally:
            await ctx.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()


def _access_token(auth: AuthClient) -> str | None:
    session = auth.current_session
    return session.access_token if session else None
