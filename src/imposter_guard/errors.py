from __future__ import annotations

from typing import Optional


class ImposterGuardError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(ImposterGuardError):
    """A required setting is missing or unusable."""


class RegistryConfigError(ImposterGuardError):
    """The watched-identity table failed validation."""

    def __init__(self, issues: list) -> None:
        self.issues = list(issues)
        detail = "; ".join(f"{i.path}: {i.message}" for i in self.issues)
        super().__init__(f"Invalid watched-identity table: {detail}")


class DecodeError(ImposterGuardError):
    """Inbound payload is malformed or has an unexpected shape."""

    def __init__(self, reason: str, payload: object = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.payload = payload


class TransportError(ImposterGuardError):
    """The stream connection failed. Fatal to the current connection."""


class ActionError(ImposterGuardError):
    """A moderation API call failed."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.error = error

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is None and not self.error:
            return base
        return f"{base} (status={self.status} error={self.error})"


class AuthError(ActionError):
    """Session could not be created or refreshed."""
