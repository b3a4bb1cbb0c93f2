"""Deterministic P-256 key derivation and ECDSA signing for Turnkey.

The private scalar is PBKDF2-HMAC-SHA256(password, salt). The salt doubles as
the "client secret" the platform hands back at login, so the same password
and client secret always recreate the same keypair.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from dataclasses import dataclass, field
from enum import Enum

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from axiomtrade.errors import CryptoError

P256_ORDER = int("ffffffff00000000ffffffffffffffffbce6faada7179e84f3b9cac2fc632550", 16)
PBKDF2_ITERATIONS = 600_000
SALT_LENGTH = 32
_SCALAR_LENGTH = 32


class SignatureEncoding(str, Enum):
    DER = "der"
    RAW = "raw"  # 64 bytes, r || s


@dataclass(frozen=True)
class P256KeyPair:
    """Hex-encoded keypair plus the base64 salt it was derived from."""

    private_key: str = field(repr=False)
    public_key: str  # compressed SEC1, 33 bytes
    client_secret: str = field(repr=False)


def _public_key_hex(private_key: ec.EllipticCurvePrivateKey) -> str:
    point = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.CompressedPoint)
    return point.hex()


def _derive_scalar(password: str, salt: bytes) -> int:
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS, dklen=_SCALAR_LENGTH)
    return int.from_bytes(digest, "big")


def generate_keypair_from_password(password: str, salt: bytes | None = None) -> P256KeyPair:
    """Derive a P-256 keypair from a password.

    Without a salt a fresh random one is drawn, and redrawn in the
    (astronomically unlikely) case the derived scalar is not in [1, n-1].
    With a caller-supplied salt an out-of-range scalar raises CryptoError.
    """
    while True:
        salt_bytes = salt if salt is not None else os.urandom(SALT_LENGTH)
        scalar = _derive_scalar(password, salt_bytes)
        if 0 < scalar < P256_ORDER:
            private_key = ec.derive_private_key(scalar, ec.SECP256R1())
            return P256KeyPair(
                private_key=scalar.to_bytes(_SCALAR_LENGTH, "big").hex(),
                public_key=_public_key_hex(private_key),
                client_secret=base64.b64encode(salt_bytes).decode("ascii"),
            )
        if salt is not None:
            raise CryptoError("Failed to generate valid API key with provided salt")


def decode_client_secret(client_secret: str) -> bytes:
    """Recover the salt bytes from a base64 client secret."""
    try:
        salt = base64.b64decode(client_secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError(f"Failed to decode client secret: {exc}") from exc
    if not salt:
        raise CryptoError("Client secret is empty")
    return salt


def recreate_keypair_from_client_secret(password: str, client_secret: str) -> P256KeyPair:
    return generate_keypair_from_password(password, decode_client_secret(client_secret))


def generate_random_keypair() -> P256KeyPair:
    """Random (not password-derived) keypair with a random client secret."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    scalar = private_key.private_numbers().private_value
    return P256KeyPair(
        private_key=scalar.to_bytes(_SCALAR_LENGTH, "big").hex(),
        public_key=_public_key_hex(private_key),
        client_secret=base64.b64encode(os.urandom(SALT_LENGTH)).decode("ascii"),
    )


def _load_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    try:
        raw = bytes.fromhex(private_key_hex)
    except ValueError as exc:
        raise CryptoError(f"Failed to decode private key hex: {exc}") from exc
    if len(raw) != _SCALAR_LENGTH:
        raise CryptoError(f"Private key must be {_SCALAR_LENGTH} bytes, got {len(raw)}")
    scalar = int.from_bytes(raw, "big")
    if not 0 < scalar < P256_ORDER:
        raise CryptoError("Private key scalar is out of range for P-256")
    return ec.derive_private_key(scalar, ec.SECP256R1())


def _load_public_key(public_key_hex: str) -> ec.EllipticCurvePublicKey:
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), bytes.fromhex(public_key_hex))
    except ValueError as exc:
        raise CryptoError(f"Failed to parse public key: {exc}") from exc


def _signature_encoding(encoding: SignatureEncoding | str) -> SignatureEncoding:
    try:
        return SignatureEncoding(encoding)
    except ValueError as exc:
        raise CryptoError(f"Unknown signature encoding: {encoding!r}") from exc


def sign_message(
    message: bytes,
    private_key_hex: str,
    encoding: SignatureEncoding | str = SignatureEncoding.DER,
) -> bytes:
    """ECDSA-SHA256 sign ``message``; DER by default, raw r||s on request."""
    encoding = _signature_encoding(encoding)
    private_key = _load_private_key(private_key_hex)
    der = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    if encoding is SignatureEncoding.DER:
        return der
    r, s = decode_dss_signature(der)
    return r.to_bytes(_SCALAR_LENGTH, "big") + s.to_bytes(_SCALAR_LENGTH, "big")


def verify_signature(
    message: bytes,
    signature: bytes,
    public_key_hex: str,
    encoding: SignatureEncoding | str = SignatureEncoding.DER,
) -> bool:
    """True when ``signature`` is valid for ``message`` under the given key.

    A well-formed signature that does not match returns False; a malformed
    key or signature raises CryptoError.
    """
    encoding = _signature_encoding(encoding)
    public_key = _load_public_key(public_key_hex)
    if encoding is SignatureEncoding.RAW:
        if len(signature) != 2 * _SCALAR_LENGTH:
            raise CryptoError(f"Raw signature must be 64 bytes, got {len(signature)}")
        r = int.from_bytes(signature[:_SCALAR_LENGTH], "big")
        s = int.from_bytes(signature[_SCALAR_LENGTH:], "big")
        signature = encode_dss_signature(r, s)
    else:
        try:
            decode_dss_signature(signature)
        except ValueError as exc:
            raise CryptoError(f"Failed to parse signature: {exc}") from exc
    try:
        public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True
