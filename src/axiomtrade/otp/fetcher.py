"""IMAP poller that retrieves the Axiom login security code from a mailbox."""

from __future__ import annotations

import asyncio
import imaplib
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from email import message_from_bytes, policy
from typing import TYPE_CHECKING, Any, Callable

from axiomtrade.errors import EmailError
from axiomtrade.otp.extract import extract_otp_from_body, extract_otp_from_subject, message_text

if TYPE_CHECKING:
    from axiomtrade.config import MailboxConfig

logger = logging.getLogger("axiomtrade.otp")

DEFAULT_HOST = "mail.inbox.lv"
DEFAULT_PORT = 993
DEFAULT_SUBJECT = "Your Axiom security code"

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _imap_date(moment: datetime) -> str:
    """IMAP SEARCH date (dd-Mon-YYYY), independent of the process locale."""
    return f"{moment.day:02d}-{_MONTHS[moment.month - 1]}-{moment.year}"


def _literal(fetch_data: list[Any]) -> bytes:
    """First literal payload from an imaplib FETCH response."""
    for item in fetch_data:
        if isinstance(item, tuple) and len(item) > 1:
            return item[1]
    return b""


class OtpFetcher:
    """Fetch the newest unread security-code email over IMAP.

    The mailbox address and password are always supplied by the caller
    (constructor, ``from_env`` or ``from_config``); nothing is hard-coded.
    """

    def __init__(
        self,
        email_address: str,
        password: str,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        folder: str = "INBOX",
        subject: str = DEFAULT_SUBJECT,
        lookback_minutes: int = 3,
        imap_factory: Callable[[str, int], Any] = imaplib.IMAP4_SSL,
    ) -> None:
        self.email_address = email_address
        self._password = password
        self.host = host
        self.port = port
        self.folder = folder
        self.subject = subject
        self.lookback_minutes = lookback_minutes
        self._imap_factory = imap_factory

    def __repr__(self) -> str:
        return f"OtpFetcher(email_address={self.email_address!r}, host={self.host!r})"

    @classmethod
    def from_env(cls) -> OtpFetcher | None:
        """Build from INBOX_LV_EMAIL / INBOX_LV_PASSWORD, or None if either is unset."""
        address = os.environ.get("INBOX_LV_EMAIL")
        password = os.environ.get("INBOX_LV_PASSWORD")
        if not address or not password:
            return None
        return cls(address, password)

    @classmethod
    def from_config(cls, config: MailboxConfig) -> OtpFetcher | None:
        if not config.is_configured:
            return None
        return cls(
            config.address,
            config.password,
            host=config.host,
            port=config.port,
            folder=config.folder,
            subject=config.subject,
            lookback_minutes=config.lookback_minutes,
        )

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #

    def fetch_otp(self) -> str | None:
        """Code from the newest unread OTP email, or None if there is none."""
        return self._fetch(since=None)

    def fetch_otp_recent(self, minutes_ago: int | None = None) -> str | None:
        """Like fetch_otp, restricted to messages from the last few minutes."""
        minutes = self.lookback_minutes if minutes_ago is None else minutes_ago
        return self._fetch(since=datetime.now(timezone.utc) - timedelta(minutes=minutes))

    def wait_for_otp(
        self,
        timeout: float = 120,
        interval: float = 5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> str | None:
        """Poll until a code arrives or ``timeout`` seconds pass.

        Always checks at least once. Returns None on timeout; mailbox
        failures raise EmailError immediately.
        """
        deadline = clock() + timeout
        checks = 0
        while True:
            checks += 1
            code = self.fetch_otp_recent()
            if code is not None:
                logger.info("OTP received after %d check(s)", checks)
                return code
            remaining = deadline - clock()
            if remaining <= 0:
                logger.warning("No OTP received within %ss (%d checks)", timeout, checks)
                return None
            logger.debug("Check #%d: no OTP yet, %.0fs remaining", checks, remaining)
            sleep(min(interval, remaining))

    async def wait_for_otp_async(self, timeout: float = 120, interval: float = 5) -> str | None:
        """wait_for_otp on a worker thread so the event loop keeps running."""
        return await asyncio.to_thread(self.wait_for_otp, timeout, interval)

    # ------------------------------------------------------------------ #
    # IMAP plumbing                                                       #
    # ------------------------------------------------------------------ #

    def _fetch(self, since: datetime | None) -> str | None:
        try:
            conn = self._imap_factory(self.host, self.port)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise EmailError(f"Cannot connect to {self.host}:{self.port}: {exc}") from exc
        try:
            return self._fetch_with(conn, since)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise EmailError(f"IMAP error on {self.host}: {exc}") from exc
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError) as exc:
                logger.debug("IMAP logout failed: %s", exc)

    def _fetch_with(self, conn: Any, since: datetime | None) -> str | None:
        conn.login(self.email_address, self._password)
        status, _ = conn.select(self.folder)
        if status != "OK":
            raise EmailError(f"Cannot select mailbox folder {self.folder!r}")

        criteria = ["UNSEEN", "SUBJECT", f'"{self.subject}"']
        if since is not None:
            criteria += ["SINCE", _imap_date(since)]
        status, data = conn.search(None, *criteria)
        if status != "OK":
            raise EmailError(f"IMAP search failed: {data!r}")

        ids = [int(i) for i in (data[0] or b"").split()]
        if not ids:
            return None
        latest = str(max(ids))

        # Fast path: the code is usually in the subject line.
        status, data = conn.fetch(latest, "(BODY.PEEK[HEADER.FIELDS (SUBJECT)])")
        code = None
        if status == "OK":
            header = message_from_bytes(_literal(data), policy=policy.default)
            code = extract_otp_from_subject(str(header.get("Subject", "")))

        if code is None:
            status, data = conn.fetch(latest, "(BODY.PEEK[])")
            if status != "OK":
                raise EmailError(f"IMAP fetch failed for message {latest}")
            code = extract_otp_from_body(message_text(_literal(data)))

        if code is None:
            logger.info("Message %s matched the subject but carried no code", latest)
            return None

        conn.store(latest, "+FLAGS", "\\Seen")
        return code
