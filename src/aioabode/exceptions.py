"""Exceptions for the aioabode library."""

from __future__ import annotations


class AbodeError(Exception):
    """Base exception for aioabode."""


class MissingCredentialError(AbodeError):
    """Raised before sending a request that lacks a secret its path requires."""


class ProtocolError(AbodeError):
    """Raised when the server responds without the expected status or shape."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(AbodeError):
    """Raised when a login attempt fails. The underlying error is in ``cause``."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransportError(AbodeError):
    """Raised when unable to reach the Abode API or push channel."""


class DecodeError(AbodeError):
    """Raised when an inbound push frame cannot be decoded."""
