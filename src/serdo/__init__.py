"""
serdo - server and domain health checks with encrypted tenant secrets.

Periodically probes servers for TCP reachability, refreshes domain WHOIS and
DNS data through an aggregation API, classifies domain health, keeps a bounded
check log per tenant and notifies over Bark or SMTP. Secret fields are stored
AES-256-GCM encrypted and can be disclosed on demand under a client-held key.
"""

__version__ = "0.1.0"
__author__ = "serdo developers"

from serdo.exceptions import (
    SerdoError,
    ValidationError,
    NetworkError,
    UpstreamError,
    DataError,
    SyncError,
    SyncDataError,
    SyncUpstreamError,
    SyncNetworkError,
    AuthError,
    NotFoundError,
    PersistenceError,
    NotificationError,
)
from serdo.enums import (
    ServerStatus,
    DomainState,
    CheckType,
    CheckTrigger,
    CheckFrequency,
    LogLevel,
    LookupSource,
    LookupErrorCode,
    SyncErrorCode,
    AuthErrorCode,
    SecretOwner,
)
from serdo.config import (
    SecurityConfig,
    PersistenceConfig,
    ProbeConfig,
    WhoisConfig,
    NotificationConfig,
    SchedulerConfig,
    LoggingConfig,
    SystemConfig,
    load_config_from_env,
    load_config_from_file,
    validate_config,
)
from serdo.models import (
    DnsRecord,
    Server,
    Provider,
    Domain,
    Settings,
    CheckLogEntry,
    ExpiringItem,
    TenantDocument,
    SecretPatch,
)
from serdo.audit_logger import AuditLogger, LogEntry
from serdo.secret_codec import SecretCodec, SealedSecret
from serdo.tenant_store import TenantStore
from serdo.auth import TokenSigner, UserStore
from serdo.reveal import RevealSession, SecretRef
from serdo.prober import Prober, ProbeResult
from serdo.whois_gateway import WhoisGateway, LookupResult, WhoisInfo
from serdo.domain_state import Classification, classify
from serdo.check_log import CheckLogStore, LogPage
from serdo.notifications import NotificationDispatcher, NotificationResult
from serdo.checks import CheckService, ServerCheckResult, DomainCheckResult
from serdo.scheduler import Scheduler

__all__ = [
    "__version__",
    # Exceptions
    "SerdoError",
    "ValidationError",
    "NetworkError",
    "UpstreamError",
    "DataError",
    "SyncError",
    "SyncDataError",
    "SyncUpstreamError",
    "SyncNetworkError",
    "AuthError",
    "NotFoundError",
    "PersistenceError",
    "NotificationError",
    # Enums
    "ServerStatus",
    "DomainState",
    "CheckType",
    "CheckTrigger",
    "CheckFrequency",
    "LogLevel",
    "LookupSource",
    "LookupErrorCode",
    "SyncErrorCode",
    "AuthErrorCode",
    "SecretOwner",
    # Config
    "SecurityConfig",
    "PersistenceConfig",
    "ProbeConfig",
    "WhoisConfig",
    "NotificationConfig",
    "SchedulerConfig",
    "LoggingConfig",
    "SystemConfig",
    "load_config_from_env",
    "load_config_from_file",
    "validate_config",
    # Models
    "DnsRecord",
    "Server",
    "Provider",
    "Domain",
    "Settings",
    "CheckLogEntry",
    "ExpiringItem",
    "TenantDocument",
    "SecretPatch",
    # Components
    "AuditLogger",
    "LogEntry",
    "SecretCodec",
    "SealedSecret",
    "TenantStore",
    "TokenSigner",
    "UserStore",
    "RevealSession",
    "SecretRef",
    "Prober",
    "ProbeResult",
    "WhoisGateway",
    "LookupResult",
    "WhoisInfo",
    "Classification",
    "classify",
    "CheckLogStore",
    "LogPage",
    "NotificationDispatcher",
    "NotificationResult",
    "CheckService",
    "ServerCheckResult",
    "DomainCheckResult",
    "Scheduler",
]
