"""TurnkeyClient - stamped requests against the Turnkey public API.

Every request body is signed with the password-derived P-256 key and the
signature travels in the ``X-Stamp`` header:

    async with TurnkeyClient(TurnkeyConfig()) as turnkey:
        session = await turnkey.fetch_session(credentials, password)
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from axiomtrade.config import TurnkeyConfig
from axiomtrade.errors import TurnkeyError
from axiomtrade.models import TurnkeyApiKey, TurnkeyCredentials, TurnkeySession, utcnow
from axiomtrade.turnkey.keys import (
    P256KeyPair,
    SignatureEncoding,
    recreate_keypair_from_client_secret,
    sign_message,
)

logger = logging.getLogger("axiomtrade.turnkey")

SIGNATURE_SCHEME = "SIGNATURE_SCHEME_TK_API_P256"
READ_WRITE_SESSION_KEY = "CREDENTIAL_TYPE_READ_WRITE_SESSION_KEY_P256"
SESSION_EXPIRATION_SECONDS = 30 * 24 * 3600


# --- Wire models ---


class _WireModel(BaseModel):
    model_config = {"populate_by_name": True}


class TurnkeyTimestamp(_WireModel):
    seconds: str
    nanos: str = "0"

    def to_datetime(self) -> datetime:
        try:
            return datetime.fromtimestamp(int(self.seconds), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return utcnow()


class TurnkeyCredential(_WireModel):
    public_key: str = Field(alias="publicKey")
    credential_type: str = Field(alias="type")


class TurnkeyWireApiKey(_WireModel):
    credential: TurnkeyCredential
    api_key_id: str = Field(alias="apiKeyId")
    api_key_name: str = Field(alias="apiKeyName")
    created_at: TurnkeyTimestamp = Field(alias="createdAt")
    expiration_seconds: str | None = Field(default=None, alias="expirationSeconds")


class TurnkeyWhoAmI(_WireModel):
    organization_id: str = Field(alias="organizationId")
    organization_name: str = Field(default="", alias="organizationName")
    user_id: str = Field(alias="userId")
    username: str = ""


class TurnkeyClient:
    """Implements the session-provider interface the session manager expects."""

    def __init__(self, config: TurnkeyConfig | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config or TurnkeyConfig()
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=self._config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "TurnkeyClient":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    #  Stamping                                                            #
    # ------------------------------------------------------------------ #
    async def derive_keypair(self, password: str, client_secret: str) -> P256KeyPair:
        """Password-derived signing key, computed on a worker thread (PBKDF2 is slow)."""
        return await asyncio.to_thread(recreate_keypair_from_client_secret, password, client_secret)

    @staticmethod
    def stamp_with(payload: bytes, keypair: P256KeyPair) -> str:
        """X-Stamp value: base64 JSON of public key, scheme and raw r||s signature hex."""
        signature = sign_message(payload, keypair.private_key, SignatureEncoding.RAW)
        stamp = {"publicKey": keypair.public_key, "scheme": SIGNATURE_SCHEME, "signature": signature.hex()}
        return base64.b64encode(json.dumps(stamp, separators=(",", ":")).encode()).decode("ascii")

    def stamp(self, payload: bytes, password: str, client_secret: str) -> str:
        return self.stamp_with(payload, recreate_keypair_from_client_secret(password, client_secret))

    def _headers(self, stamp: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "text/plain;charset=UTF-8",
            "Origin": "https://axiom.trade",
            "Referer": "https://axiom.trade/",
            "x-client-version": self._config.client_version,
        }
        if stamp is not None:
            headers["X-Stamp"] = stamp
        return headers

    async def _post_stamped(self, path: str, body: dict, keypair: P256KeyPair) -> dict:
        payload = json.dumps(body, separators=(",", ":")).encode()
        headers = self._headers(self.stamp_with(payload, keypair))
        try:
            resp = await self._client.post(path, content=payload, headers=headers)
        except httpx.TransportError as exc:
            raise TurnkeyError(f"Turnkey request {path} failed: {exc}") from exc
        if not resp.is_success:
            raise TurnkeyError(
                f"Turnkey {path} failed {resp.status_code}: {resp.text}",
                {"status_code": resp.status_code},
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise TurnkeyError(f"Turnkey {path} returned non-JSON body: {resp.text[:200]!r}") from exc
        if not isinstance(data, dict):
            raise TurnkeyError(f"Turnkey {path} returned {type(data).__name__}, expected an object")
        return data

    # ------------------------------------------------------------------ #
    #  Queries                                                             #
    # ------------------------------------------------------------------ #

    async def whoami(self, organization_id: str, password: str, client_secret: str) -> TurnkeyWhoAmI:
        return await self._whoami(organization_id, await self.derive_keypair(password, client_secret))

    async def _whoami(self, organization_id: str, keypair: P256KeyPair) -> TurnkeyWhoAmI:
        data = await self._post_stamped("/public/v1/query/whoami", {"organizationId": organization_id}, keypair)
        try:
            return TurnkeyWhoAmI.model_validate(data)
        except ValidationError as exc:
            raise TurnkeyError(f"Unexpected whoami response: {exc}") from exc

    async def get_api_keys(
        self, user_id: str, organization_id: str, password: str, client_secret: str
    ) -> list[TurnkeyWireApiKey]:
        return await self._get_api_keys(user_id, organization_id, await self.derive_keypair(password, client_secret))

    async def _get_api_keys(self, user_id: str, organization_id: str, keypair: P256KeyPair) -> list[TurnkeyWireApiKey]:
        data = await self._post_stamped(
            "/public/v1/query/get_api_keys",
            {"userId": user_id, "organizationId": organization_id},
            keypair,
        )
        try:
            return [TurnkeyWireApiKey.model_validate(k) for k in data.get("apiKeys", [])]
        except (ValidationError, TypeError) as exc:
            raise TurnkeyError(f"Unexpected get_api_keys response: {exc}") from exc

    async def create_read_write_session(
        self,
        organization_id: str,
        user_id: str,
        target_public_key: str,
        api_key_name: str,
        password: str,
        client_secret: str,
    ) -> bool:
        """Register ``target_public_key`` as a 30-day read/write session key."""
        body = {
            "parameters": {
                "apiKeyName": api_key_name,
                "targetPublicKey": target_public_key,
                "userId": user_id,
                "expirationSeconds": str(SESSION_EXPIRATION_SECONDS),
            },
            "organizationId": organization_id,
            "timestampMs": str(int(utcnow().timestamp() * 1000)),
            "type": "ACTIVITY_TYPE_CREATE_READ_WRITE_SESSION_V2",
        }
        keypair = await self.derive_keypair(password, client_secret)
        try:
            await self._post_stamped("/public/v1/submit/create_read_write_session", body, keypair)
        except TurnkeyError as exc:
            logger.warning("create_read_write_session rejected: %s", exc)
            return False
        return True

    def parse_session(
        self, whoami: TurnkeyWhoAmI, api_keys: list[TurnkeyWireApiKey], client_secret: str
    ) -> TurnkeySession:
        keys: list[TurnkeyApiKey] = []
        for key in api_keys:
            created_at = key.created_at.to_datetime()
            expires_at = None
            if key.expiration_seconds and key.expiration_seconds.isdigit():
                expires_at = created_at + timedelta(seconds=int(key.expiration_seconds))
            keys.append(
                TurnkeyApiKey(
                    api_key_id=key.api_key_id,
                    api_key_name=key.api_key_name,
                    public_key=key.credential.public_key,
                    key_type=key.credential.credential_type,
                    created_at=created_at,
                    expires_at=expires_at,
                )
            )
        expiries = [k.expires_at for k in keys if k.expires_at is not None]
        return TurnkeySession(
            organization_id=whoami.organization_id,
            user_id=whoami.user_id,
            username=whoami.username,
            client_secret=client_secret,
            api_keys=keys,
            expires_at=min(expiries) if expiries else None,
        )

    async def fetch_session(self, credentials: TurnkeyCredentials, password: str) -> TurnkeySession:
        keypair = await self.derive_keypair(password, credentials.client_secret)
        whoami = await self._whoami(credentials.organization_id, keypair)
        api_keys = await self._get_api_keys(credentials.user_id, credentials.organization_id, keypair)
        session = self.parse_session(whoami, api_keys, credentials.client_secret)
        logger.info("Turnkey session ready: %s", self.session_summary(session))
        return session

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get("/public/v1/health", timeout=5.0)
        except httpx.HTTPError as exc:
            logger.debug("Turnkey health check failed: %s", exc)
            return False
        return resp.is_success

    @staticmethod
    def get_session_key(session: TurnkeySession, key_type: str = READ_WRITE_SESSION_KEY) -> TurnkeyApiKey | None:
        return next((k for k in session.api_keys if k.key_type == key_type), None)

    @staticmethod
    def session_summary(session: TurnkeySession) -> str:
        now = utcnow()
        total = len(session.api_keys)
        expired = sum(1 for k in session.api_keys if k.expires_at is not None and now > k.expires_at)
        age = int((now - session.created_at).total_seconds() // 60)
        expires_in = int((session.expires_at - now).total_seconds() // 60) if session.expires_at else -1
        return (
            f"Turnkey Session - User: {session.username}, Keys: {total - expired}/{total} active, "
            f"Age: {age}m, Expires: {expires_in}m"
        )
