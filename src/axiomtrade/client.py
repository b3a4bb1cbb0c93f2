"""EnhancedClient - authenticated requests with rate limiting and retry.

Every call goes: global limiter -> endpoint limiter -> retry loop around
one authenticated attempt (which itself refreshes once on 401).

    async with EnhancedClient(load_config()) as client:
        await client.login("me@example.com", "hunter2")
        data = await client.make_json_request("GET", "/portfolio")
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from axiomtrade.auth.client import AuthClient
from axiomtrade.auth.session_manager import SessionManager
from axiomtrade.auth.token_store import TokenStore
from axiomtrade.config import Config, RetryConfig
from axiomtrade.errors import (
    NetworkError,
    RateLimitExceededError,
    RequestFailedError,
    RetryableStatusError,
)
from axiomtrade.logging_setup import new_correlation_id
from axiomtrade.models import AuthTokens, LoginResult
from axiomtrade.otp.fetcher import OtpFetcher
from axiomtrade.rate_limiter import EndpointRateLimiter, SlidingWindowRateLimiter
from axiomtrade.retry import RETRYABLE_STATUSES, RetryPolicy
from axiomtrade.turnkey.client import TurnkeyClient

logger = logging.getLogger("axiomtrade.client")


class EnhancedClient:
    def __init__(
        self,
        config: Config | None = None,
        *,
        auth_client: AuthClient | None = None,
        session_manager: SessionManager | None = None,
        rate_limiter: EndpointRateLimiter | None = None,
        global_rate_limiter: SlidingWindowRateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.config = config or Config()
        cfg = self.config
        self._owned_turnkey: TurnkeyClient | None = None

        if auth_client is None:
            fetcher = OtpFetcher.from_config(cfg.mailbox) or OtpFetcher.from_env()
            auth_client = AuthClient(cfg, token_store=TokenStore(cfg.auth.token_path), otp_fetcher=fetcher)
        self.auth_client = auth_client

        if session_manager is None:
            self._owned_turnkey = TurnkeyClient(cfg.turnkey)
            session_manager = SessionManager(cfg.auth.session_path, cfg.auth.auto_save, turnkey=self._owned_turnkey)
        self.session_manager = session_manager

        rl = cfg.rate_limit
        self.global_rate_limiter = global_rate_limiter or SlidingWindowRateLimiter(
            rl.global_max_requests, rl.global_window
        )
        self.rate_limiter = rate_limiter or EndpointRateLimiter(
            SlidingWindowRateLimiter(rl.default_max_requests, rl.default_window),
            limits={path: (lim.max_requests, lim.window) for path, lim in rl.endpoints.items()},
        )
        self.retry_policy = retry_policy or RetryPolicy(cfg.retry)

        # Refreshes done inside AuthClient must reach the persisted session too.
        self.auth_client.token_store.subscribe(self.session_manager.sync_tokens)

    async def __aenter__(self) -> "EnhancedClient":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.auth_client.aclose()
        if self._owned_turnkey is not None:
            await self._owned_turnkey.aclose()

    # ------------------------------------------------------------------ #
    #  Authentication                                                      #
    # ------------------------------------------------------------------ #

    async def login(self, email: str, password: str, otp_code: str | None = None) -> LoginResult:
        """Run the login protocol and publish a fresh session."""
        cid = new_correlation_id()
        logger.info("Login attempt %s started", cid)
        result = await self.auth_client.login_full(email, password, otp_code)
        await self.session_manager.create_session_from_login_result(
            result, password=password, user_agent=self.auth_client.user_agent
        )
        return result

    async def ensure_valid_authentication(self) -> AuthTokens:
        return await self.auth_client.ensure_valid_authentication()

    async def logout(self) -> None:
        await self.auth_client.logout()
        await self.session_manager.clear_session()

    # ------------------------------------------------------------------ #
    #  Requests                                                            #
    # ------------------------------------------------------------------ #

    async def make_request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        await self.global_rate_limiter.wait_if_needed()
        await self.rate_limiter.wait_for_endpoint(url)

        async def attempt() -> httpx.Response:
            resp = await self.auth_client.make_authenticated_request(method, url, json=json, params=params)
            if resp.status_code in RETRYABLE_STATUSES:
                raise RetryableStatusError(resp.status_code, resp)
            return resp

        attempts = self.retry_policy.config.max_retries + 1
        try:
            resp = await self.retry_policy.run(attempt)
        except RetryableStatusError as exc:
            if exc.status_code == 429:
                raise RateLimitExceededError(
                    f"{method} {url} still rate limited after {attempts} attempts"
                ) from exc
            raise RequestFailedError(
                f"{method} {url} failed with {exc.status_code} after {attempts} attempts",
                status_code=exc.status_code,
            ) from exc
        except NetworkError as exc:
            raise RequestFailedError(f"{method} {url} failed after {attempts} attempts: {exc}") from exc

        server = resp.request.url
        await self.session_manager.mark_api_call(f"{server.scheme}://{server.host}")
        return resp

    async def make_json_request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        resp = await self.make_request(method, url, json=json, params=params)
        if resp.is_success:
            return resp.json()
        if resp.status_code == 429:
            raise RateLimitExceededError(f"{method} {url} rate limited")
        raise RequestFailedError(
            f"Request failed with status {resp.status_code}: {resp.text}",
            status_code=resp.status_code,
        )

    # ------------------------------------------------------------------ #
    #  Limits & retry tuning                                               #
    # ------------------------------------------------------------------ #

    async def add_endpoint_limit(self, endpoint: str, max_requests: int, window: float) -> None:
        await self.rate_limiter.add_endpoint_limit(endpoint, max_requests, window)

    def set_retry_config(self, config: RetryConfig) -> None:
        self.retry_policy = RetryPolicy(config)

    async def rate_limit_status(self) -> dict[str, int]:
        return {"global": await self.global_rate_limiter.request_count(), **await self.rate_limiter.status()}

    async def reset_rate_limits(self) -> None:
        await self.global_rate_limiter.reset()
        await self.rate_limiter.reset()
