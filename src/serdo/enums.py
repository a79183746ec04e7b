"""
Enumeration types for the serdo health-check core.

These enums provide type-safe constants for entity states, log entry
kinds, schedule frequencies and error codes.
"""

from enum import Enum


class ServerStatus(Enum):
    """Reachability status of a server."""

    RUNNING = "running"
    STOPPED = "stopped"


class DomainState(Enum):
    """Derived health classification of a domain."""

    NORMAL = "normal"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    PENDING_DELETE = "pending_delete"
    REDEMPTION = "redemption"
    SUSPENDED = "suspended"
    NO_DNS = "no_dns"


class CheckType(Enum):
    """Kind of batch check recorded in the check log."""

    SERVER = "server"
    DOMAIN = "domain"


class CheckTrigger(Enum):
    """Origin of a batch check."""

    AUTO = "auto"
    MANUAL = "manual"


class CheckFrequency(Enum):
    """Domain auto-check frequency."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LookupSource(Enum):
    """Which lookup path produced a result."""

    LOOKUP = "lookup"
    SEPARATE = "separate"


class LookupErrorCode(Enum):
    """Error codes for the WHOIS/DNS gateway."""

    INVALID_DOMAIN = "INVALID_DOMAIN"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    QUERY_FAILED = "QUERY_FAILED"


class SyncErrorCode(Enum):
    """Error codes for single-domain sync rejection."""

    NOT_FOUND = "not_found"
    LOOKUP_FAILED = "lookup_failed"
    DNS_EMPTY = "dns_empty"
    WHOIS_EXPIRATION_INVALID = "whois_expiration_invalid"


class AuthErrorCode(Enum):
    """Error codes for authentication and reveal failures."""

    UNAUTHORIZED = "unauthorized"
    INVALID = "invalid"
    INVALID_CURRENT_PASSWORD = "invalid_current_password"
    INVALID_REVEAL_KEY = "invalid_reveal_key"


class SecretOwner(Enum):
    """Kind of entity a revealable secret belongs to."""

    SERVER = "server"
    PROVIDER = "provider"
    SETTINGS = "settings"
