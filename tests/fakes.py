"""In-memory stand-in for the hosted platform, served through httpx.MockTransport.

Covers the auth API (/auth/v1), the row API (/rest/v1), the functions
(/functions/v1) and an OpenAI-style completion gateway, which is all the
clients and the functions server talk to.
"""

from __future__ import annotations

import itertools
import json
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

BACKEND_URL = "http://backend.test"
GATEWAY_URL = "http://gateway.test/v1/chat/completions"
ANON_KEY = "anon-key"
SERVICE_KEY = "service-key"

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


def sse(*deltas: str, done: bool = True) -> list[bytes]:
    """Encode content deltas as `data:` lines, one chunk per delta."""
    chunks = [
        ("data: " + json.dumps({"choices": [{"delta": {"content": d}}]}) + "\n\n").encode()
        for d in deltas
    ]
    if done:
        chunks.append(b"data: [DONE]\n\n")
    return chunks


async def _aiter(chunks: list[bytes]):
    for chunk in chunks:
        yield chunk


def _json(status: int, body: Any) -> httpx.Response:
    return httpx.Response(status, json=body)


def _bearer(request: httpx.Request) -> str | None:
    header = request.headers.get("authorization", "")
    return header[len("Bearer "):] if header.startswith("Bearer ") else None


def _matches(row: dict[str, Any], column: str, expr: str) -> bool:
    value = row.get(column)
    if expr == "is.null":
        return value is None
    if expr.startswith("in.(") and expr.endswith(")"):
        return str(value) in expr[4:-1].split(",")
    if expr.startswith("eq."):
        expected = expr[3:]
        if isinstance(value, bool):
            return str(value).lower() == expected
        return str(value) == expected
    raise AssertionError(f"unsupported filter {column}={expr}")


class FakeBackend:
    """Scriptable fake of auth, rows, functions and the completion gateway."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.users: dict[str, dict[str, Any]] = {}
        self.passwords: dict[str, str] = {}
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.requests: list[tuple[str, str]] = []
        self.logouts: list[str] = []
        self.deleted_users: list[str] = []
        self.confirm_email = False
        self.fail_tables: set[str] = set()
        # Scripted responses of the chat function: (status, chunks)
        self.chat_responses: list[tuple[int, list[bytes]]] = []
        self.chat_requests: list[dict[str, Any]] = []
        self.title_requests: list[dict[str, Any]] = []
        self.title_status = 200
        self.tts_requests: list[dict[str, Any]] = []
        # Raw one-shot replies for a function name: (status, body bytes)
        self.function_bodies: dict[str, tuple[int, bytes]] = {}
        # Row counts seen by each chat request: (conversations, messages)
        self.rows_at_chat: list[tuple[int, int]] = []
        # Gateway scripting for the functions server
        self.gateway_stream: tuple[int, list[bytes]] = (200, sse("Hello"))
        self.gateway_title: tuple[int, Any] = (200, {"choices": [{"message": {"content": "A Title"}}]})
        self.gateway_requests: list[dict[str, Any]] = []

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _timestamp(self) -> str:
        return (_EPOCH + timedelta(seconds=next(self._ids))).isoformat()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Identity helpers
    def add_user(self, email: str, password: str = "secret", username: str | None = None) -> dict[str, Any]:
        user = {"id": self._next("user"), "email": email, "user_metadata": {}}
        if username:
            user["user_metadata"]["username"] = username
        self.users[user["id"]] = user
        self.passwords[email.lower()] = password
        return user

    def user_by_email(self, email: str) -> dict[str, Any]:
        return next(u for u in self.users.values() if u["email"].lower() == email.lower())

    def issue_session(self, user: dict[str, Any]) -> dict[str, Any]:
        access, refresh = self._next("at"), self._next("rt")
        self.access_tokens[access] = user["id"]
        self.refresh_tokens[refresh] = user["id"]
        return {
            "access_token": access,
            "refresh_token": refresh,
            "expires_in": 3600,
            "token_type": "bearer",
            "user": user,
        }

    def revoke_access(self, token: str) -> None:
        self.access_tokens.pop(token, None)

    def revoke_refresh(self, token: str) -> None:
        self.refresh_tokens.pop(token, None)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables[table]

    # Dispatch
    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if request.url.host == "gateway.test":
            return self._gateway(request)
        if path.startswith("/auth/v1"):
            return self._auth(request, path[len("/auth/v1"):])
        if path.startswith("/rest/v1/"):
            return self._rest(request, path[len("/rest/v1/"):])
        if path.startswith("/functions/v1/"):
            return self._functions(request, path[len("/functions/v1/"):])
        return _json(404, {"error": f"no route {path}"})

    # Auth API
    def _auth(self, request: httpx.Request, path: str) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        if path == "/token":
            grant = request.url.params.get("grant_type")
            if grant == "password":
                email = body.get("email", "").lower()
                if self.passwords.get(email) != body.get("password"):
                    return _json(400, {"error_description": "Invalid login credentials"})
                return _json(200, self.issue_session(self.user_by_email(email)))
            if grant == "refresh_token":
                user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if user_id is None or user_id not in self.users:
                    return _json(400, {"error_description": "Invalid Refresh Token"})
                return _json(200, self.issue_session(self.users[user_id]))
            return _json(400, {"error": "unsupported grant"})
        if path == "/user" and request.method == "GET":
            user_id = self.access_tokens.get(_bearer(request) or "")
            if user_id is None or user_id not in self.users:
                return _json(401, {"msg": "invalid JWT"})
            return _json(200, self.users[user_id])
        if path == "/signup":
            email = body["email"]
            if email.lower() in self.passwords:
                return _json(422, {"msg": "User already registered"})
            user = self.add_user(email, body["password"], (body.get("data") or {}).get("username"))
            if self.confirm_email:
                return _json(200, user)
            return _json(200, self.issue_session(user))
        if path == "/logout":
            token = _bearer(request) or ""
            user_id = self.access_tokens.pop(token, None)
            self.logouts.append(token)
            for refresh, owner in list(self.refresh_tokens.items()):
                if owner == user_id:
                    del self.refresh_tokens[refresh]
            return httpx.Response(204)
        if path.startswith("/admin/users/") and request.method == "DELETE":
            if request.headers.get("apikey") != SERVICE_KEY:
                return _json(403, {"msg": "not admin"})
            user_id = path.rsplit("/", 1)[1]
            self.users.pop(user_id, None)
            self.deleted_users.append(user_id)
            return _json(200, {})
        return _json(404, {"msg": f"no auth route {path}"})

    # Row API
    def _filtered(self, table: str, params: httpx.QueryParams) -> list[dict[str, Any]]:
        rows = self.tables[table]
        for column, expr in params.multi_items():
            if column in ("select", "order", "limit", "offset", "on_conflict"):
                continue
            rows = [r for r in rows if _matches(r, column, expr)]
        return rows

    def _rest(self, request: httpx.Request, table: str) -> httpx.Response:
        if table in self.fail_tables:
            return _json(500, {"message": f"{table} unavailable"})
        if _bearer(request) in (None, ""):
            return _json(401, {"message": "missing bearer"})
        params = request.url.params
        if request.method == "GET":
            rows = list(self._filtered(table, params))
            order = params.get("order")
            if order:
                column, direction = order.rsplit(".", 1)
                rows.sort(key=lambda r: str(r.get(column) or ""), reverse=direction == "desc")
            offset = int(params.get("offset", 0))
            limit = params.get("limit")
            rows = rows[offset:offset + int(limit)] if limit is not None else rows[offset:]
            columns = params.get("select", "*")
            if columns != "*":
                keep = columns.split(",")
                rows = [{k: r.get(k) for k in keep} for r in rows]
            return _json(200, rows)

        body = json.loads(request.content) if request.content else None
        if request.method == "POST":
            incoming = body if isinstance(body, list) else [body]
            conflict = params.get("on_conflict")
            stored = []
            for row in incoming:
                existing = None
                if conflict:
                    existing = next((r for r in self.tables[table] if r.get(conflict) == row.get(conflict)), None)
                if existing is not None:
                    existing.update(row)
                    existing["updated_at"] = self._timestamp()
                    stored.append(existing)
                    continue
                new = dict(row)
                new.setdefault("id", self._next(table))
                now = self._timestamp()
                new.setdefault("created_at", now)
                new.setdefault("updated_at", now)
                self.tables[table].append(new)
                stored.append(new)
            return _json(201, stored)
        if request.method == "PATCH":
            rows = self._filtered(table, params)
            for row in rows:
                row.update(body)
            return _json(200, rows)
        if request.method == "DELETE":
            doomed = self._filtered(table, params)
            self.tables[table] = [r for r in self.tables[table] if r not in doomed]
            return _json(200, doomed)
        return _json(405, {"message": "method not allowed"})

    # Functions
    def _functions(self, request: httpx.Request, name: str) -> httpx.Response:
        user_id = self.access_tokens.get(_bearer(request) or "")
        if user_id is None:
            return _json(401, {"error": "Unauthorized"})
        body = json.loads(request.content) if request.content else {}
        if name in self.function_bodies:
            status, raw = self.function_bodies.pop(name)
            return httpx.Response(status, content=raw)
        if name == "chat":
            self.chat_requests.append(body)
            self.rows_at_chat.append((len(self.tables["conversations"]), len(self.tables["messages"])))
            status, chunks = self.chat_responses.pop(0) if self.chat_responses else (200, sse("OK"))
            if status != 200:
                return _json(status, {"error": f"status {status}"})
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=_aiter(chunks))
        if name == "generate-title":
            self.title_requests.append(body)
            if self.title_status != 200:
                return _json(self.title_status, {"error": "Failed to generate title"})
            title = "Generated: " + body["firstMessage"][:20]
            for row in self.tables["conversations"]:
                if row["id"] == body["conversationId"]:
                    row["title"] = title
            return _json(200, {"title": title})
        if name == "delete-account":
            conversation_ids = {c["id"] for c in self.tables["conversations"] if c.get("user_id") == user_id}
            self.tables["messages"] = [
                m for m in self.tables["messages"] if m.get("conversation_id") not in conversation_ids
            ]
            for table in ("conversations", "tasks", "voice_commands", "settings"):
                self.tables[table] = [r for r in self.tables[table] if r.get("user_id") != user_id]
            self.users.pop(user_id, None)
            self.deleted_users.append(user_id)
            return _json(200, {"ok": True})
        if name == "elevenlabs-tts":
            self.tts_requests.append(body)
            return httpx.Response(200, headers={"content-type": "audio/mpeg"}, content=b"ID3-audio")
        return _json(404, {"error": f"no function {name}"})

    # Completion gateway
    def _gateway(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.gateway_requests.append(body)
        if body.get("stream"):
            status, chunks = self.gateway_stream
            if status != 200:
                return _json(status, {"error": "gateway says no"})
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=_aiter(chunks))
        status, payload = self.gateway_title
        return _json(status, payload)
