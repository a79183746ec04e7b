"""
Exception classes for the serdo health-check core.

All exceptions inherit from SerdoError and carry a machine-readable code,
a human-readable message and optional structured details.
"""

from typing import Optional


class SerdoError(Exception):
    """Base exception for all serdo errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(SerdoError):
    """Raised when caller input is rejected (bad domain name, bad page size)."""

    pass


class NetworkError(SerdoError):
    """Raised when a connect, TLS or timeout failure occurs."""

    pass


class UpstreamError(SerdoError):
    """Raised when the lookup API answers with an error or a malformed body."""

    pass


class DataError(SerdoError):
    """Raised when fetched data cannot be accepted (no records, invalid date)."""

    pass


class SyncError(SerdoError):
    """Raised when a single-domain sync is rejected.

    ``status`` is the HTTP-style status hint for outer surfaces
    (404 missing domain, 502 lookup failure or data rejection).
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        status: int = 422,
    ) -> None:
        super().__init__(code, message, details)
        self.status = status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status"] = self.status
        return data


class SyncDataError(SyncError, DataError):
    """Sync rejected because the looked-up data is unusable."""

    pass


class SyncUpstreamError(SyncError, UpstreamError):
    """Sync rejected because the lookup API failed or answered badly."""

    pass


class SyncNetworkError(SyncError, NetworkError):
    """Sync rejected because every lookup request failed in transport."""

    pass


class AuthError(SerdoError):
    """Raised when a token, password or reveal key is missing or invalid."""

    pass


class NotFoundError(SerdoError):
    """Raised when a referenced tenant entity does not exist."""

    pass


class PersistenceError(SerdoError):
    """Raised when persistence operations fail (file I/O, JSON parsing)."""

    pass


class NotificationError(SerdoError):
    """Raised when notification delivery fails."""

    pass
