"""SessionManager - owns the current AuthSession snapshot and its persistence.

The session is replaced wholesale under an async writer lock; readers get
the snapshot that was current when they asked and never see a half-built
one. Network calls (Turnkey) happen before the lock is taken.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

import aiorwlock
from pydantic import ValidationError

from axiomtrade.config import expand_path
from axiomtrade.errors import AxiomError, NotAuthenticatedError, SessionError, TurnkeyError
from axiomtrade.models import (
    AuthCookies,
    AuthSession,
    AuthTokens,
    LoginResult,
    SessionMetadata,
    TurnkeyCredentials,
    TurnkeySession,
    UserInfo,
    utcnow,
)

logger = logging.getLogger("axiomtrade.auth.session")

BASIC_TURNKEY_LIFETIME = timedelta(days=30)


@runtime_checkable
class TurnkeySessionProvider(Protocol):
    """What the session manager needs from a key-custody provider."""

    async def fetch_session(self, credentials: TurnkeyCredentials, password: str) -> TurnkeySession: ...

    async def health_check(self) -> bool: ...


def basic_turnkey_session(credentials: TurnkeyCredentials) -> TurnkeySession:
    """Placeholder session built only from login credentials (no API keys)."""
    now = utcnow()
    return TurnkeySession(
        organization_id=credentials.organization_id,
        user_id=credentials.user_id,
        username=f"user_{credentials.user_id[:8]}",
        client_secret=credentials.client_secret,
        api_keys=[],
        created_at=now,
        expires_at=now + BASIC_TURNKEY_LIFETIME,
    )


class SessionManager:
    def __init__(
        self,
        storage_path: str | Path | None = None,
        auto_save: bool = True,
        turnkey: TurnkeySessionProvider | None = None,
    ) -> None:
        self._path: Path | None = expand_path(str(storage_path)) if storage_path is not None else None
        self.auto_save = auto_save
        self.turnkey = turnkey
        self._lock = aiorwlock.RWLock()
        self._session: AuthSession | None = self._read_file() if self._path and self._path.exists() else None

    # --- Persistence ---

    def _read_file(self) -> AuthSession | None:
        assert self._path is not None
        try:
            with open(self._path) as f:
                return AuthSession.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self._path, exc)
            return None

    def _write_file(self, session: AuthSession) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w") as f:
            json.dump(session.model_dump(mode="json"), f, indent=2)
        os.chmod(self._path, 0o600)

    async def _swap(self, session: AuthSession) -> None:
        async with self._lock.writer_lock:
            self._session = session
            if self.auto_save:
                self._write_file(session)

    async def _update(self, change: Callable[[AuthSession], AuthSession]) -> AuthSession:
        """Apply ``change`` to the current snapshot and publish the result."""
        async with self._lock.writer_lock:
            if self._session is None:
                raise NotAuthenticatedError("No active session")
            self._session = change(self._session)
            if self.auto_save:
                self._write_file(self._session)
            return self._session

    # --- Creation ---

    async def create_session(
        self,
        tokens: AuthTokens,
        user_info: UserInfo | None = None,
        cookies: AuthCookies | None = None,
        user_agent: str | None = None,
    ) -> AuthSession:
        base_cookies = AuthCookies.from_tokens(tokens)
        session = AuthSession(
            tokens=tokens,
            cookies=base_cookies.merge_with(cookies) if cookies else base_cookies,
            user_info=user_info,
            session_metadata=SessionMetadata(user_agent=user_agent or ""),
        )
        await self._swap(session)
        logger.info("Session created")
        return session

    async def create_session_from_login_result(
        self,
        result: LoginResult,
        password: str | None = None,
        user_agent: str | None = None,
    ) -> AuthSession:
        """New session from a login, with a Turnkey session when credentials came back.

        A provider failure is logged and replaced by a basic Turnkey session so
        login itself never fails on the secondary provider.
        """
        turnkey_session = None
        if result.turnkey_credentials is not None:
            turnkey_session = await self._turnkey_session_for(result.turnkey_credentials, password)

        base_cookies = AuthCookies.from_tokens(result.tokens)
        session = AuthSession(
            tokens=result.tokens,
            cookies=base_cookies.merge_with(result.cookies),
            user_info=result.user_info,
            turnkey_session=turnkey_session,
            session_metadata=SessionMetadata(user_agent=user_agent or ""),
        )
        await self._swap(session)
        logger.info("Session created from login (turnkey: %s)", "yes" if turnkey_session else "no")
        return session

    async def _turnkey_session_for(self, credentials: TurnkeyCredentials, password: str | None) -> TurnkeySession:
        if self.turnkey is None or not password:
            return basic_turnkey_session(credentials)
        try:
            return await self.turnkey.fetch_session(credentials, password)
        except AxiomError as exc:
            logger.warning("Turnkey session setup failed, using basic session: %s", exc)
            return basic_turnkey_session(credentials)

    async def setup_turnkey_session(self, credentials: TurnkeyCredentials, password: str) -> TurnkeySession:
        """Fetch a Turnkey session from the provider and attach it to the current session."""
        if self.turnkey is None:
            raise TurnkeyError("No Turnkey provider configured")
        turnkey_session = await self.turnkey.fetch_session(credentials, password)
        await self._update(lambda s: s.with_turnkey_session(turnkey_session))
        return turnkey_session

    # --- Reads ---

    async def get_session(self) -> AuthSession | None:
        async with self._lock.reader_lock:
            return self._session

    async def is_session_valid(self) -> bool:
        session = await self.get_session()
        return session is not None and session.is_valid()

    async def needs_refresh(self) -> bool:
        session = await self.get_session()
        return session is None or session.needs_refresh()

    async def get_cookie_header(self) -> str | None:
        session = await self.get_session()
        return session.cookie_header() if session else None

    async def get_access_token(self) -> str | None:
        session = await self.get_session()
        return session.tokens.access_token if session else None

    async def get_refresh_token(self) -> str | None:
        session = await self.get_session()
        return session.tokens.refresh_token if session else None

    async def get_turnkey_session(self) -> TurnkeySession | None:
        session = await self.get_session()
        return session.turnkey_session if session else None

    # --- Mutations ---

    async def update_tokens(self, tokens: AuthTokens) -> AuthSession:
        return await self._update(lambda s: s.with_tokens(tokens))

    async def update_cookies(self, cookies: AuthCookies) -> AuthSession:
        return await self._update(lambda s: s.with_cookies(cookies))

    async def mark_api_call(self, api_server: str | None = None) -> None:
        async with self._lock.writer_lock:
            if self._session is None:
                return
            self._session = self._session.with_api_call(api_server)

    async def sync_tokens(self, tokens: AuthTokens | None) -> None:
        """TokenStore listener: mirror refreshed tokens into the session."""
        if tokens is None:
            return
        session = await self.get_session()
        if session is None or session.tokens == tokens:
            return
        await self.update_tokens(tokens)

    async def save_session(self) -> None:
        if self._path is None:
            raise SessionError("No session storage path configured")
        async with self._lock.reader_lock:
            if self._session is None:
                raise SessionError("No active session to save")
            self._write_file(self._session)

    async def load_session(self) -> AuthSession:
        if self._path is None or not self._path.exists():
            raise SessionError(f"No session file at {self._path}")
        try:
            with open(self._path) as f:
                session = AuthSession.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as exc:
            raise SessionError(f"Failed to load session: {exc}") from exc
        async with self._lock.writer_lock:
            self._session = session
        return session

    async def clear_session(self) -> None:
        async with self._lock.writer_lock:
            self._session = None
            if self.auto_save and self._path is not None:
                self._path.unlink(missing_ok=True)
        logger.info("Session cleared")

    # --- Reporting ---

    async def session_summary(self) -> str:
        session = await self.get_session()
        if session is None:
            return "No active session"
        tokens = session.tokens
        if tokens.is_expired():
            token_status = "EXPIRED"
        elif tokens.needs_refresh():
            token_status = "NEEDS_REFRESH"
        else:
            token_status = "VALID"
        meta = session.session_metadata
        since = meta.minutes_since_last_api_call()
        return (
            f"Session: {'VALID' if session.is_valid() else 'INVALID'} | "
            f"Tokens: {token_status} | "
            f"Cookies: {'PRESENT' if session.has_valid_cookies() else 'MISSING'} | "
            f"Turnkey: {'ACTIVE' if session.turnkey_session else 'NOT_SET'} | "
            f"Age: {meta.session_age_minutes()}m | "
            f"Last API: {'NEVER' if since is None else f'{since}m ago'}"
        )

    async def check_turnkey_health(self) -> bool:
        if self.turnkey is None:
            return False
        return await self.turnkey.health_check()
