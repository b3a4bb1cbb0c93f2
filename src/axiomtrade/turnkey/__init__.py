"""Turnkey key custody - deterministic P-256 keys and stamped API requests."""

from axiomtrade.turnkey.client import TurnkeyClient
from axiomtrade.turnkey.keys import (
    P256KeyPair,
    SignatureEncoding,
    generate_keypair_from_password,
    recreate_keypair_from_client_secret,
    sign_message,
    verify_signature,
)

__all__ = [
    "TurnkeyClient",
    "P256KeyPair",
    "SignatureEncoding",
    "generate_keypair_from_password",
    "recreate_keypair_from_client_secret",
    "sign_message",
    "verify_signature",
]
