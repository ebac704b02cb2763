from __future__ import annotations

import sys
from pathlib import Path

import httpx
import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"

# Force current worktree src to the front of sys.path so imports use this tree,
# not any installed or sibling worktrees.
SRC_STR = str(SRC_PATH)
sys.path = [SRC_STR] + [p for p in sys.path if p != SRC_STR]

from aide.services.context import AppContext  # noqa: E402
from aide.services.notices import NoticeBoard  # noqa: E402
from aide.util.config import ClientConfig  # noqa: E402

from fakes import ANON_KEY, BACKEND_URL, FakeBackend  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_state_file(tmp_path_factory, monkeypatch):
    """Keep the local state file and backend settings isolated per test."""
    state_dir = tmp_path_factory.mktemp("aide_state")
    monkeypatch.setenv("AIDE_CONFIG", str(state_dir / "aide.conf"))
    for name in ("AIDE_BACKEND_URL", "AIDE_ANON_KEY", "AIDE_FUNCTIONS_URL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def client_config(tmp_path) -> ClientConfig:
    return ClientConfig(backend_url=BACKEND_URL, anon_key=ANON_KEY, config_path=tmp_path / "aide.conf")


@pytest.fixture
def ctx(backend, client_config) -> AppContext:
    """Application context whose clients all talk to the fake backend."""
    http = httpx.AsyncClient(transport=backend.transport())
    return AppContext.create(client_config, http=http, notices=NoticeBoard())


async def sign_in(ctx: AppContext, backend: FakeBackend, email: str = "ada@example.com", username: str | None = None):
    """Create a user in the fake backend and sign the context in as it."""
    backend.add_user(email, "secret", username)
    return await ctx.auth.sign_in_with_password(email, "secret")
