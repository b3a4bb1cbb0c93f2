"""Pull a six-digit security code out of an Axiom OTP email."""

from __future__ import annotations

import re
from email import message_from_bytes, policy
from email.message import EmailMessage

_SUBJECT_PATTERN = re.compile(r"Your Axiom security code is (\d{6})")

# Tried in order; the first match wins.
_BODY_PATTERNS = [
    re.compile(r"Your Axiom security code is[:\s]+(\d{6})"),
    re.compile(r"Your security code is[:\s]+(\d{6})"),
    re.compile(r"security code[:\s]+(\d{6})"),
    re.compile(r"<span[^>]*>(\d{6})</span>"),
    re.compile(r"<b>(\d{6})</b>"),
    re.compile(r"<strong>(\d{6})</strong>"),
]
_BARE_CODE = re.compile(r"\b(\d{6})\b")
_CONTEXT_MARKERS = ("security code", "Your Axiom")


def extract_otp_from_subject(subject: str) -> str | None:
    match = _SUBJECT_PATTERN.search(subject)
    return match.group(1) if match else None


def extract_otp_from_body(body: str) -> str | None:
    """Known phrasings and HTML wrappers first, then any bare six-digit
    number, but only if the text looks like a security-code email."""
    for pattern in _BODY_PATTERNS:
        match = pattern.search(body)
        if match:
            return match.group(1)
    if any(marker in body for marker in _CONTEXT_MARKERS):
        match = _BARE_CODE.search(body)
        if match:
            return match.group(1)
    return None


def message_text(raw: bytes) -> str:
    """Decoded subject plus every text/* part of a raw RFC822 message."""
    msg = message_from_bytes(raw, policy=policy.default)
    chunks: list[str] = []
    subject = msg.get("Subject")
    if subject:
        chunks.append(str(subject))
    parts = msg.walk() if msg.is_multipart() else [msg]
    for part in parts:
        if part.get_content_maintype() != "text":
            continue
        if isinstance(part, EmailMessage):
            try:
                chunks.append(part.get_content())
                continue
            except (LookupError, UnicodeDecodeError):
                pass  # unknown charset: fall through to a lossy decode
        payload = part.get_payload(decode=True) or b""
        chunks.append(payload.decode("utf-8", errors="replace"))
    return "\n".join(chunks)
