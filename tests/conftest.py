"""Shared pytest fixtures for the axiomtrade test suite."""

from __future__ import annotations

import imaplib
from typing import Any, Callable

import httpx
import pytest

from axiomtrade.config import Config, RetryConfig


# --- Fakes ---


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAxiomApi:
    """Route-table HTTP server for httpx.MockTransport.

    Responses queued for a path are served in order; the last one repeats.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, list[Callable[[httpx.Request], httpx.Response]]] = {}

    def respond(
        self,
        path: str,
        status: int = 200,
        json: Any = None,
        cookies: dict[str, str] | None = None,
    ) -> "FakeAxiomApi":
        headers = [("set-cookie", f"{k}={v}; Path=/; HttpOnly") for k, v in (cookies or {}).items()]

        def build(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=json if json is not None else {}, headers=headers)

        self._routes.setdefault(path, []).append(build)
        return self

    def respond_with(self, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> "FakeAxiomApi":
        self._routes.setdefault(path, []).append(handler)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": "no route"})
        build = queue.pop(0) if len(queue) > 1 else queue[0]
        return build(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


class FakeImap:
    """Minimal imaplib.IMAP4_SSL stand-in backed by a dict of raw messages."""

    def __init__(self, messages: dict[int, bytes] | None = None, fail_login: bool = False) -> None:
        self.messages = messages or {}
        self.fail_login = fail_login
        self.seen: set[int] = set()
        self.criteria: tuple = ()
        self.fetch_parts: list[str] = []
        self.logged_out = False
        self.login_user: str | None = None

    def login(self, user: str, password: str):
        if self.fail_login:
            raise imaplib.IMAP4.error("AUTHENTICATIONFAILED")
        self.login_user = user
        return ("OK", [b"Logged in"])

    def select(self, folder: str = "INBOX"):
        return ("OK", [str(len(self.messages)).encode()])

    def search(self, charset, *criteria):
        self.criteria = criteria
        ids = sorted(i for i in self.messages if i not in self.seen)
        return ("OK", [" ".join(str(i) for i in ids).encode()])

    def fetch(self, msg_id: str, message_parts: str):
        self.fetch_parts.append(message_parts)
        raw = self.messages[int(msg_id)]
        payload = raw.split(b"\r\n\r\n", 1)[0] + b"\r\n\r\n" if "HEADER.FIELDS" in message_parts else raw
        return ("OK", [(f"{msg_id} (BODY[] {{{len(payload)}}}".encode(), payload), b")"])

    def store(self, msg_id: str, command: str, flags: str):
        self.seen.add(int(msg_id))
        return ("OK", [b""])

    def logout(self):
        self.logged_out = True
        return ("BYE", [b""])


def make_email(subject: str, body: str, content_type: str = "text/plain") -> bytes:
    return (
        f"From: Axiom <no-reply@axiom.trade>\r\n"
        f"To: me@inbox.lv\r\n"
        f"Subject: {subject}\r\n"
        f"MIME-Version: 1.0\r\n"
        f"Content-Type: {content_type}; charset=utf-8\r\n"
        f"\r\n"
        f"{body}\r\n"
    ).encode()


# --- Fixtures ---


@pytest.fixture
def fast_pbkdf2(monkeypatch):
    """Cut PBKDF2 iterations so hashing and key derivation are instant."""
    monkeypatch.setattr("axiomtrade.auth.password.ITERATIONS", 1)
    monkeypatch.setattr("axiomtrade.turnkey.keys.PBKDF2_ITERATIONS", 1)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def api():
    return FakeAxiomApi()


@pytest.fixture
def config(tmp_path):
    """Config with all files under tmp_path and deterministic retry."""
    cfg = Config()
    cfg.auth.token_path = str(tmp_path / "tokens.json")
    cfg.auth.session_path = str(tmp_path / "session.json")
    cfg.api.user_agent = "pytest-agent/1.0"
    cfg.retry = RetryConfig(max_retries=3, initial_delay=0.1, max_delay=10.0, jitter=False)
    return cfg


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep real mailbox / token env vars from leaking into tests."""
    for var in ("INBOX_LV_EMAIL", "INBOX_LV_PASSWORD", "AXIOM_ACCESS_TOKEN", "AXIOM_REFRESH_TOKEN"):
        monkeypatch.delenv(var, raising=False)
