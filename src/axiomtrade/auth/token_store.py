"""TokenStore - concurrent holder of the access/refresh token pair.

Reads share an async reader lock; writes take the writer lock only long
enough to swap the snapshot and overwrite the token file. Refreshes are
single-flight: concurrent callers that hit an expired token wait for one
refresh instead of each firing their own.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable

import aiorwlock
from pydantic import ValidationError

from axiomtrade.config import expand_path
from axiomtrade.errors import AxiomError, NotAuthenticatedError, TokenExpiredError, TokenNotFoundError
from axiomtrade.logging_setup import redact
from axiomtrade.models import AuthTokens

logger = logging.getLogger("axiomtrade.auth.token_store")

Refresher = Callable[[AuthTokens], Awaitable[AuthTokens]]
TokenListener = Callable[["AuthTokens | None"], Awaitable[None]]


def tokens_from_env() -> AuthTokens | None:
    """Pre-issued tokens from AXIOM_ACCESS_TOKEN / AXIOM_REFRESH_TOKEN (no expiry)."""
    access = os.environ.get("AXIOM_ACCESS_TOKEN")
    refresh = os.environ.get("AXIOM_REFRESH_TOKEN")
    if not access or not refresh:
        return None
    return AuthTokens(access_token=access, refresh_token=refresh, expires_at=None)


class TokenStore:
    def __init__(self, path: str | Path | None = None, tokens: AuthTokens | None = None) -> None:
        self._path: Path | None = expand_path(str(path)) if path is not None else None
        self._lock = aiorwlock.RWLock()
        self._refresh_lock = asyncio.Lock()
        self._listeners: list[TokenListener] = []
        self._tokens: AuthTokens | None = tokens if tokens is not None else self._load()

    @classmethod
    def from_env(cls, path: str | Path | None = None) -> "TokenStore":
        """Store seeded from environment tokens, falling back to the token file."""
        return cls(path, tokens=tokens_from_env())

    @property
    def path(self) -> Path | None:
        return self._path

    # --- Persistence ---

    def _load(self) -> AuthTokens | None:
        if self._path is None or not self._path.exists():
            return None
        try:
            with open(self._path) as f:
                tokens = AuthTokens.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, exc)
            return None
        logger.debug("Loaded tokens from %s", self._path)
        return tokens

    def _persist(self, tokens: AuthTokens | None) -> None:
        if self._path is None:
            return
        if tokens is None:
            self._path.unlink(missing_ok=True)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w") as f:
            json.dump(tokens.model_dump(mode="json"), f, indent=2)
        os.chmod(self._path, 0o600)

    # --- Listeners ---

    def subscribe(self, listener: TokenListener) -> None:
        """Call ``listener(tokens)`` after every set/clear, outside the lock."""
        self._listeners.append(listener)

    async def _notify(self, tokens: AuthTokens | None) -> None:
        for listener in self._listeners:
            await listener(tokens)

    # --- Core operations ---

    async def set(self, tokens: AuthTokens) -> None:
        async with self._lock.writer_lock:
            self._tokens = tokens
            self._persist(tokens)
        logger.debug("Stored tokens (access %s)", redact(tokens.access_token))
        await self._notify(tokens)

    async def get(self) -> AuthTokens | None:
        async with self._lock.reader_lock:
            return self._tokens

    async def clear(self) -> None:
        async with self._lock.writer_lock:
            self._tokens = None
            self._persist(None)
        await self._notify(None)

    async def is_expired(self) -> bool:
        async with self._lock.reader_lock:
            return self._tokens is None or self._tokens.is_expired()

    async def needs_refresh(self) -> bool:
        async with self._lock.reader_lock:
            return self._tokens is None or self._tokens.needs_refresh()

    async def get_access_token(self) -> str:
        tokens = await self.get()
        if tokens is None:
            raise TokenNotFoundError("No access token stored")
        return tokens.access_token

    async def get_refresh_token(self) -> str:
        tokens = await self.get()
        if tokens is None:
            raise TokenNotFoundError("No refresh token stored")
        return tokens.refresh_token

    # --- Refresh coordination ---

    async def refresh_with(self, refresher: Refresher, stale: AuthTokens | None = None) -> AuthTokens:
        """Run ``refresher`` once for all concurrent callers.

        ``stale`` is the snapshot the caller found unusable; if the store has
        moved past it by the time the refresh lock is acquired, the newer
        tokens are returned without another round-trip.
        """
        async with self._refresh_lock:
            current = await self.get()
            if current is None:
                raise NotAuthenticatedError("No stored tokens to refresh; log in first")
            if stale is not None and current.access_token != stale.access_token:
                logger.debug("Tokens already refreshed by another task")
                return current
            tokens = await refresher(current)
            await self.set(tokens)
            return tokens

    async def ensure_valid(self, refresher: Refresher) -> AuthTokens:
        """Tokens that are safe to use now, refreshing at most once."""
        tokens = await self.get()
        if tokens is None:
            raise NotAuthenticatedError("Not authenticated; log in first")
        if not tokens.is_expired():
            return tokens
        logger.info("Access token expired, refreshing")
        try:
            return await self.refresh_with(refresher, stale=tokens)
        except NotAuthenticatedError:
            raise
        except AxiomError as exc:
            raise TokenExpiredError(f"Token refresh failed; full login required ({exc})") from exc
