"""Client-side password hashing for the Axiom login endpoints."""

from __future__ import annotations

import base64
import hashlib

# Public, fixed salt shared with the web client. Changing it breaks login.
SALT = bytes(
    [
        217, 3, 161, 123, 53, 200, 206, 36, 143, 2, 220, 252, 240, 109, 204, 23,
        217, 174, 79, 158, 18, 76, 149, 117, 73, 40, 207, 77, 34, 194, 196, 163,
    ]
)
ITERATIONS = 600_000
KEY_LENGTH = 32


def hash_password(password: str) -> str:
    """PBKDF2-HMAC-SHA256 the password and return it base64-encoded (44 chars)."""
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), SALT, ITERATIONS, dklen=KEY_LENGTH)
    return base64.b64encode(digest).decode("ascii")
