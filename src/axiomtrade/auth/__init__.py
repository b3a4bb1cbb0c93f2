"""Authentication - login protocol, token storage and session management."""

from axiomtrade.auth.client import AuthClient, EndpointRotator, LoginState
from axiomtrade.auth.password import hash_password
from axiomtrade.auth.session_manager import SessionManager, TurnkeySessionProvider
from axiomtrade.auth.token_store import TokenStore

__all__ = [
    "AuthClient",
    "EndpointRotator",
    "LoginState",
    "SessionManager",
    "TokenStore",
    "TurnkeySessionProvider",
    "hash_password",
]
