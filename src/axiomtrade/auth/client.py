"""AuthClient - the Axiom two-step login protocol and authenticated requests.

Login is password-hash -> OTP challenge -> OTP redemption:

    async with AuthClient(config, otp_fetcher=OtpFetcher.from_env()) as auth:
        result = await auth.login_full("me@example.com", "hunter2")
        resp = await auth.make_authenticated_request("GET", "/portfolio")

Each call picks an API host from the endpoint pool, never the same host
twice in a row.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import timedelta
from enum import Enum
from typing import Any

import httpx

from axiomtrade.auth.password import hash_password
from axiomtrade.auth.token_store import TokenStore
from axiomtrade.config import Config
from axiomtrade.errors import (
    AxiomError,
    ConfigError,
    InvalidCredentialsError,
    InvalidOtpError,
    NetworkError,
    OtpRequiredError,
    TokenExpiredError,
    TokenNotFoundError,
)
from axiomtrade.logging_setup import api_host, redact
from axiomtrade.models import (
    ACCESS_COOKIE,
    OTP_COOKIE,
    REFRESH_COOKIE,
    AuthCookies,
    AuthTokens,
    Credentials,
    LoginResult,
    TurnkeyCredentials,
    UserInfo,
    utcnow,
)
from axiomtrade.otp.fetcher import OtpFetcher
from axiomtrade.user_agents import get_random_desktop_user_agent

logger = logging.getLogger("axiomtrade.auth")


class LoginState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    STEP1_REQUESTED = "step1_requested"
    OTP_PENDING = "otp_pending"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    EXPIRED = "expired"


class EndpointRotator:
    """Uniform random choice over the pool, excluding the previous pick."""

    def __init__(self, endpoints: list[str], rng: random.Random | None = None) -> None:
        if not endpoints:
            raise ConfigError("At least one API endpoint is required")
        self._endpoints = [e.rstrip("/") for e in endpoints]
        self._rng = rng or random.Random()
        self.last: str | None = None

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    def next(self) -> str:
        candidates = [e for e in self._endpoints if e != self.last] or self._endpoints
        self.last = self._rng.choice(candidates)
        return self.last


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _user_info(raw: Any) -> UserInfo | None:
    if not isinstance(raw, dict):
        return None
    fields = {k: str(raw[k]) for k in ("id", "email", "username") if raw.get(k) is not None}
    return UserInfo(**fields)


class AuthClient:
    def __init__(
        self,
        config: Config | None = None,
        *,
        token_store: TokenStore | None = None,
        otp_fetcher: OtpFetcher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or Config()
        api = self._config.api
        self._rotator = EndpointRotator(api.endpoints, rng)
        self.user_agent = api.user_agent or get_random_desktop_user_agent()
        self._client = httpx.AsyncClient(
            headers={
                "User-Agent": self.user_agent,
                "Accept": "application/json, text/plain, */*",
                "Accept-Language": "en-US,en;q=0.5",
                "Origin": api.origin,
                "Referer": f"{api.origin.rstrip('/')}/",
            },
            timeout=api.timeout,
            transport=transport,
        )
        self.token_store = token_store if token_store is not None else TokenStore(self._config.auth.token_path)
        self.otp_fetcher = otp_fetcher
        self.state = LoginState.UNAUTHENTICATED
        self._lifetime = timedelta(seconds=self._config.auth.access_token_lifetime)

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                           #
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def current_endpoint(self) -> str | None:
        """Host used by the most recent call, if any."""
        return self._rotator.last

    def next_endpoint(self) -> str:
        return self._rotator.next()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        api_host.set(httpx.URL(url).host)
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}") from exc
        # Auth cookies are always sent explicitly; keep the jar empty.
        self._client.cookies.clear()
        return resp

    # ------------------------------------------------------------------ #
    #  Login protocol                                                      #
    # ------------------------------------------------------------------ #

    async def login_full(self, email: str, password: str, otp_code: str | None = None) -> LoginResult:
        return await self.login_with_credentials(Credentials(email=email, password=password), otp_code)

    async def login_with_credentials(self, credentials: Credentials, otp_code: str | None = None) -> LoginResult:
        """Hash off the event loop, then run both login steps."""
        b64_password = await asyncio.to_thread(hash_password, credentials.password)
        return await self.login_with_hash_full(credentials.email, b64_password, otp_code)

    async def login(self, email: str, password: str, otp_code: str | None = None) -> AuthTokens:
        return (await self.login_full(email, password, otp_code)).tokens

    async def login_with_hash_full(self, email: str, b64_password: str, otp_code: str | None = None) -> LoginResult:
        """Full login with a precomputed password hash."""
        otp_jwt_token = await self.login_step1(email, b64_password)
        try:
            code = await self.resolve_otp(otp_code)
        except AxiomError:
            self.state = LoginState.UNAUTHENTICATED
            raise
        return await self.login_step2(otp_jwt_token, code, email, b64_password)

    async def login_with_hash(self, email: str, b64_password: str, otp_code: str | None = None) -> AuthTokens:
        return (await self.login_with_hash_full(email, b64_password, otp_code)).tokens

    async def login_step1(self, email: str, b64_password: str) -> str:
        """Submit the password hash; returns the OTP challenge token."""
        self.state = LoginState.STEP1_REQUESTED
        endpoint = self._rotator.next()
        resp = await self._send(
            "POST", f"{endpoint}/login-password-v2", json={"email": email, "b64Password": b64_password}
        )
        if not resp.is_success:
            self.state = LoginState.UNAUTHENTICATED
            logger.warning("Login step 1 rejected by %s with %d", endpoint, resp.status_code)
            raise InvalidCredentialsError(
                "Invalid email or password", {"status_code": resp.status_code}
            )

        challenge = _json_body(resp).get("otpJwtToken")
        if not challenge:
            cookies = AuthCookies.from_set_cookie_headers(resp.headers.get_list("set-cookie"))
            challenge = cookies.additional_cookies.get(OTP_COOKIE)
        if not challenge:
            self.state = LoginState.UNAUTHENTICATED
            raise TokenNotFoundError("Login step 1 returned no OTP challenge token")

        self.state = LoginState.OTP_PENDING
        logger.info("Login step 1 accepted; OTP challenge issued")
        return challenge

    async def resolve_otp(self, otp_code: str | None = None) -> str:
        """Caller-supplied code if given, else poll the configured mailbox."""
        if otp_code:
            return otp_code
        if self.otp_fetcher is None:
            raise OtpRequiredError("OTP code required: pass one or configure a mailbox")
        auth = self._config.auth
        logger.info("Waiting up to %ss for the OTP email", auth.otp_timeout)
        code = await self.otp_fetcher.wait_for_otp_async(auth.otp_timeout, auth.otp_poll_interval)
        if code is None:
            raise OtpRequiredError(f"OTP not received within {auth.otp_timeout}s")
        return code

    async def login_step2(self, otp_jwt_token: str, otp_code: str, email: str, b64_password: str) -> LoginResult:
        """Redeem the OTP; stores and returns the issued tokens."""
        endpoint = self._rotator.next()
        resp = await self._send(
            "POST",
            f"{endpoint}/login-otp",
            json={"code": otp_code, "email": email, "b64Password": b64_password},
            headers={"Cookie": f"{OTP_COOKIE}={otp_jwt_token}"},
        )
        if not resp.is_success:
            self.state = LoginState.UNAUTHENTICATED
            logger.warning("Login step 2 rejected by %s with %d", endpoint, resp.status_code)
            raise InvalidOtpError("OTP code rejected", {"status_code": resp.status_code})

        server_cookies = AuthCookies.from_set_cookie_headers(resp.headers.get_list("set-cookie"))
        body = _json_body(resp)

        # Cookies win over the JSON body when both carry a token.
        access = server_cookies.auth_access_token or body.get("accessToken")
        refresh = server_cookies.auth_refresh_token or body.get("refreshToken")
        if server_cookies.auth_access_token and body.get("accessToken") not in (None, access):
            logger.debug("Step 2 cookie and body access tokens differ; using cookie")
        if not access or not refresh:
            self.state = LoginState.UNAUTHENTICATED
            raise TokenNotFoundError("Login step 2 returned no access/refresh token")

        tokens = AuthTokens(access_token=access, refresh_token=refresh, expires_at=utcnow() + self._lifetime)
        cookies = AuthCookies.from_tokens(tokens).merge_with(server_cookies)

        turnkey = None
        if body.get("orgId") and body.get("userId") and body.get("clientSecret"):
            turnkey = TurnkeyCredentials(
                organization_id=str(body["orgId"]),
                user_id=str(body["userId"]),
                client_secret=str(body["clientSecret"]),
            )
            logger.info(
                "Captured Turnkey credentials (org %s, secret %s)",
                turnkey.organization_id,
                redact(turnkey.client_secret),
            )
        else:
            logger.info("No Turnkey credentials in login response")

        await self.token_store.set(tokens)
        self.state = LoginState.AUTHENTICATED
        logger.info("Login complete via %s (access %s)", endpoint, redact(access))
        return LoginResult(tokens=tokens, turnkey_credentials=turnkey, user_info=_user_info(body.get("user")), cookies=cookies)

    # ------------------------------------------------------------------ #
    #  Refresh                                                             #
    # ------------------------------------------------------------------ #

    async def refresh_access_token(self, refresh_token: str) -> AuthCookies:
        """Exchange the refresh token; returns the cookies the server set."""
        endpoint = self._rotator.next()
        resp = await self._send(
            "POST", f"{endpoint}/refresh-access-token", headers={"Cookie": f"{REFRESH_COOKIE}={refresh_token}"}
        )
        if not resp.is_success:
            raise TokenExpiredError("Refresh token rejected", {"status_code": resp.status_code})
        cookies = AuthCookies.from_set_cookie_headers(resp.headers.get_list("set-cookie"))
        if not cookies.auth_access_token:
            raise TokenNotFoundError("Refresh response carried no access token")
        return cookies

    async def _refresh(self, tokens: AuthTokens) -> AuthTokens:
        cookies = await self.refresh_access_token(tokens.refresh_token)
        refreshed = tokens.refreshed(
            cookies.auth_access_token or tokens.access_token,
            self._lifetime,
            refresh_token=cookies.auth_refresh_token,
        )
        logger.info("Access token refreshed (%s)", redact(refreshed.access_token))
        return refreshed

    async def refresh_tokens(self) -> AuthTokens:
        self.state = LoginState.REFRESHING
        try:
            tokens = await self.token_store.refresh_with(self._refresh)
        except AxiomError:
            self.state = LoginState.EXPIRED
            raise
        self.state = LoginState.AUTHENTICATED
        return tokens

    async def ensure_valid_authentication(self) -> AuthTokens:
        """Usable tokens, refreshed once if expired. Call before each
        connection attempt of anything that needs auth (e.g. a websocket)."""
        try:
            tokens = await self.token_store.ensure_valid(self._refresh)
        except TokenExpiredError:
            self.state = LoginState.EXPIRED
            raise
        self.state = LoginState.AUTHENTICATED
        return tokens

    async def get_tokens(self) -> AuthTokens | None:
        return await self.token_store.get()

    async def logout(self) -> None:
        await self.token_store.clear()
        self.state = LoginState.UNAUTHENTICATED

    # ------------------------------------------------------------------ #
    #  Authenticated requests                                              #
    # ------------------------------------------------------------------ #

    def resolve_url(self, url: str) -> str:
        """Relative paths go to the next host in the rotation."""
        if url.startswith("/"):
            return f"{self._rotator.next()}{url}"
        return url

    async def _send_with_token(self, method: str, url: str, tokens: AuthTokens, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Cookie"] = f"{ACCESS_COOKIE}={tokens.access_token}"
        return await self._send(method, url, headers=headers, **kwargs)

    async def make_authenticated_request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send with the access-token cookie; on 401 refresh once and retry once."""
        target = self.resolve_url(url)
        tokens = await self.token_store.get()
        if tokens is None:
            raise TokenNotFoundError("No access token; log in first")

        resp = await self._send_with_token(method, target, tokens, json=json, params=params, headers=headers)
        if resp.status_code != 401:
            return resp

        logger.info("401 from %s; refreshing access token once", target)
        try:
            fresh = await self.token_store.refresh_with(self._refresh, stale=tokens)
        except NetworkError:
            raise
        except AxiomError as exc:
            self.state = LoginState.EXPIRED
            raise TokenExpiredError(f"Token refresh after 401 failed: {exc}") from exc

        resp = await self._send_with_token(method, target, fresh, json=json, params=params, headers=headers)
        if resp.status_code == 401:
            self.state = LoginState.EXPIRED
            raise TokenExpiredError("Request still unauthorized after token refresh")
        return resp
