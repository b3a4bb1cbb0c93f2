"""Pydantic data models for axiomtrade: tokens, cookies, sessions, login results."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from pydantic import BaseModel, Field

ACCESS_COOKIE = "auth-access-token"
REFRESH_COOKIE = "auth-refresh-token"
OTP_COOKIE = "auth-otp-login-token"

# Hard gate: a token this close to expiry is treated as expired.
EXPIRY_BUFFER = timedelta(minutes=5)
# Proactive hint: a token this close to expiry should be refreshed soon.
REFRESH_BUFFER = timedelta(minutes=15)
TURNKEY_REFRESH_BUFFER = timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Credentials & tokens ---


class Credentials(BaseModel):
    """Login input. Lives only for the duration of a login call."""

    email: str
    password: str = Field(repr=False)


class AuthTokens(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at - EXPIRY_BUFFER

    def needs_refresh(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at - REFRESH_BUFFER

    def refreshed(
        self,
        access_token: str,
        lifetime: timedelta,
        refresh_token: str | None = None,
        now: datetime | None = None,
    ) -> "AuthTokens":
        """Return a copy carrying a new access token.

        The expiry never moves backwards; tokens without an expiry keep none.
        """
        expires_at = self.expires_at
        if expires_at is not None:
            expires_at = max(expires_at, (now or utcnow()) + lifetime)
        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            expires_at=expires_at,
        )


# --- Cookies ---


class AuthCookies(BaseModel):
    auth_access_token: str | None = None
    auth_refresh_token: str | None = None
    g_state: str | None = '{"i_l":0}'
    additional_cookies: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_set_cookie_headers(cls, headers: Iterable[str]) -> "AuthCookies":
        """Build cookies from raw Set-Cookie header values (attributes are ignored)."""
        cookies = cls(g_state=None)
        for header in headers:
            pair = header.split(";", 1)[0]
            if "=" not in pair:
                continue
            name, value = pair.split("=", 1)
            name, value = name.strip(), value.strip()
            if name == ACCESS_COOKIE:
                cookies.auth_access_token = value
            elif name == REFRESH_COOKIE:
                cookies.auth_refresh_token = value
            elif name == "g_state":
                cookies.g_state = value
            elif name:
                cookies.additional_cookies[name] = value
        return cookies

    @classmethod
    def from_tokens(cls, tokens: AuthTokens) -> "AuthCookies":
        return cls(auth_access_token=tokens.access_token, auth_refresh_token=tokens.refresh_token)

    def merge_with(self, other: "AuthCookies") -> "AuthCookies":
        """Return a copy where every value present in ``other`` wins."""
        return AuthCookies(
            auth_access_token=other.auth_access_token or self.auth_access_token,
            auth_refresh_token=other.auth_refresh_token or self.auth_refresh_token,
            g_state=other.g_state or self.g_state,
            additional_cookies={**self.additional_cookies, **other.additional_cookies},
        )

    def has_auth_tokens(self) -> bool:
        return bool(self.auth_access_token and self.auth_refresh_token)

    def header_value(self) -> str:
        parts: list[str] = []
        if self.g_state:
            parts.append(f"g_state={self.g_state}")
        if self.auth_refresh_token:
            parts.append(f"{REFRESH_COOKIE}={self.auth_refresh_token}")
        if self.auth_access_token:
            parts.append(f"{ACCESS_COOKIE}={self.auth_access_token}")
        parts.extend(f"{k}={v}" for k, v in self.additional_cookies.items())
        return "; ".join(parts)


# --- Turnkey ---


class TurnkeyCredentials(BaseModel):
    organization_id: str
    user_id: str
    client_secret: str = Field(repr=False)


class TurnkeyApiKey(BaseModel):
    api_key_id: str
    api_key_name: str
    public_key: str
    key_type: str
    created_at: datetime
    expires_at: datetime | None = None


class TurnkeySession(BaseModel):
    organization_id: str
    user_id: str
    username: str
    client_secret: str = Field(repr=False)
    api_keys: list[TurnkeyApiKey] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None

    def needs_refresh(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at - TURNKEY_REFRESH_BUFFER


# --- Session aggregate ---


class UserInfo(BaseModel):
    id: str | None = None
    email: str | None = None
    username: str | None = None


class SessionMetadata(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    last_refreshed_at: datetime | None = None
    last_api_call_at: datetime | None = None
    current_api_server: str | None = None
    user_agent: str = ""
    ip_address: str | None = None
    client_fingerprint: str | None = None

    def session_age_minutes(self, now: datetime | None = None) -> int:
        return int(((now or utcnow()) - self.created_at).total_seconds() // 60)

    def minutes_since_last_api_call(self, now: datetime | None = None) -> int | None:
        if self.last_api_call_at is None:
            return None
        return int(((now or utcnow()) - self.last_api_call_at).total_seconds() // 60)


class AuthSession(BaseModel):
    """Snapshot of everything one logged-in user needs.

    Treat instances as immutable once published; the ``with_*`` helpers
    return modified copies.
    """

    tokens: AuthTokens
    cookies: AuthCookies = Field(default_factory=AuthCookies)
    turnkey_session: TurnkeySession | None = None
    user_info: UserInfo | None = None
    session_metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.tokens.is_expired(now) and self.has_valid_cookies()

    def needs_refresh(self, now: datetime | None = None) -> bool:
        return self.tokens.needs_refresh(now) or self.turnkey_needs_refresh(now)

    def has_valid_cookies(self) -> bool:
        return self.cookies.has_auth_tokens()

    def turnkey_needs_refresh(self, now: datetime | None = None) -> bool:
        return self.turnkey_session is not None and self.turnkey_session.needs_refresh(now)

    def cookie_header(self) -> str:
        return self.cookies.header_value()

    def with_tokens(self, tokens: AuthTokens) -> "AuthSession":
        metadata = self.session_metadata.model_copy(update={"last_refreshed_at": utcnow()})
        cookies = self.cookies.merge_with(AuthCookies.from_tokens(tokens))
        return self.model_copy(
            update={"tokens": tokens, "cookies": cookies, "session_metadata": metadata}, deep=True
        )

    def with_cookies(self, cookies: AuthCookies) -> "AuthSession":
        return self.model_copy(update={"cookies": self.cookies.merge_with(cookies)}, deep=True)

    def with_turnkey_session(self, session: TurnkeySession) -> "AuthSession":
        return self.model_copy(update={"turnkey_session": session}, deep=True)

    def with_api_call(self, api_server: str | None = None) -> "AuthSession":
        update: dict = {"last_api_call_at": utcnow()}
        if api_server:
            update["current_api_server"] = api_server
        metadata = self.session_metadata.model_copy(update=update)
        return self.model_copy(update={"session_metadata": metadata}, deep=True)


class LoginResult(BaseModel):
    tokens: AuthTokens
    turnkey_credentials: TurnkeyCredentials | None = None
    user_info: UserInfo | None = None
    cookies: AuthCookies = Field(default_factory=AuthCookies)
