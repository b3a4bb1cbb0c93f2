"""Structured error codes and exception classes for axiomtrade."""

from __future__ import annotations

__all__ = [
    "ErrorCode",
    "AxiomError",
    "InvalidCredentialsError",
    "OtpRequiredError",
    "InvalidOtpError",
    "TokenExpiredError",
    "TokenNotFoundError",
    "NotAuthenticatedError",
    "NetworkError",
    "CryptoError",
    "EmailError",
    "RateLimitExceededError",
    "RequestFailedError",
    "RetryableStatusError",
    "SessionError",
    "TurnkeyError",
    "ConfigError",
    "ErrorResponse",
]

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorCode(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    OTP_REQUIRED = "OTP_REQUIRED"
    INVALID_OTP = "INVALID_OTP"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    NETWORK_ERROR = "NETWORK_ERROR"
    CRYPTO_ERROR = "CRYPTO_ERROR"
    EMAIL_ERROR = "EMAIL_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    REQUEST_FAILED = "REQUEST_FAILED"
    RETRYABLE_STATUS = "RETRYABLE_STATUS"
    SESSION_ERROR = "SESSION_ERROR"
    TURNKEY_ERROR = "TURNKEY_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"


class AxiomError(Exception):
    """Base for every error raised by axiomtrade.

    Subclasses pin ``code`` so callers can branch on either the type or the
    structured code (for example when rendering an error in the CLI).
    """

    code: ErrorCode = ErrorCode.REQUEST_FAILED

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict = details or {}


class InvalidCredentialsError(AxiomError):
    code = ErrorCode.INVALID_CREDENTIALS


class OtpRequiredError(AxiomError):
    code = ErrorCode.OTP_REQUIRED


class InvalidOtpError(AxiomError):
    code = ErrorCode.INVALID_OTP


class TokenExpiredError(AxiomError):
    code = ErrorCode.TOKEN_EXPIRED


class TokenNotFoundError(AxiomError):
    code = ErrorCode.TOKEN_NOT_FOUND


class NotAuthenticatedError(AxiomError):
    code = ErrorCode.NOT_AUTHENTICATED


class NetworkError(AxiomError):
    code = ErrorCode.NETWORK_ERROR


class CryptoError(AxiomError):
    code = ErrorCode.CRYPTO_ERROR


class EmailError(AxiomError):
    code = ErrorCode.EMAIL_ERROR


class RateLimitExceededError(AxiomError):
    code = ErrorCode.RATE_LIMITED


class RequestFailedError(AxiomError):
    code = ErrorCode.REQUEST_FAILED

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class RetryableStatusError(AxiomError):
    """Raised inside a retry attempt when the server answered with a transient status."""

    code = ErrorCode.RETRYABLE_STATUS

    def __init__(self, status_code: int, response: Any = None) -> None:
        super().__init__(f"Retryable HTTP status {status_code}", {"status_code": status_code})
        self.status_code = status_code
        self.response = response


class SessionError(AxiomError):
    code = ErrorCode.SESSION_ERROR


class TurnkeyError(AxiomError):
    code = ErrorCode.TURNKEY_ERROR


class ConfigError(AxiomError):
    code = ErrorCode.CONFIG_ERROR


class ErrorResponse(BaseModel):
    """Serialisable envelope for reporting an error (CLI --json output)."""

    error: dict  # {code: str, message: str, details: dict}

    @classmethod
    def from_axiom_error(cls, exc: AxiomError) -> "ErrorResponse":
        return cls(error={"code": exc.code.value, "message": exc.message, "details": exc.details})
