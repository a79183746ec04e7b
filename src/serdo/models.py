"""
Data models for the serdo health-check core.

Entities are persisted inside one JSON document per tenant using camelCase
keys. Each model converts to and from that wire shape with ``to_dict`` /
``from_dict``. Unknown keys written by CRUD surfaces are carried through
untouched in ``extra``.

Secret-bearing fields hold plaintext in memory; the tenant store wraps them
into envelopes on save and unwraps them on load.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from .enums import CheckFrequency, CheckTrigger, CheckType, DomainState, ServerStatus

# Accepted for the WHOIS API method setting. The gateway always issues GET;
# the value is stored and returned for CRUD surfaces only.
API_METHODS = ("GET", "POST")


def _pop_extra(data: dict, known: set[str]) -> dict:
    return {k: v for k, v in data.items() if k not in known}


def _api_method(value: Any) -> str:
    method = str(value or "GET").upper()
    return method if method in API_METHODS else "GET"


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class DnsRecord:
    """A single DNS resource record."""

    type: str
    name: str
    value: str
    ttl: int = 300
    linked_server_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "name": self.name, "value": self.value, "ttl": self.ttl}
        if self.linked_server_id:
            data["linkedServerId"] = self.linked_server_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DnsRecord":
        return cls(
            type=str(data.get("type", "")).upper(),
            name=str(data.get("name", "")),
            value=str(data.get("value", "")),
            ttl=_int_or_none(data.get("ttl")) or 300,
            linked_server_id=data.get("linkedServerId") or None,
        )


@dataclass
class Server:
    """A monitored server."""

    id: str
    name: str
    ip: str
    ssh_port: int = 22
    status: ServerStatus = ServerStatus.STOPPED
    last_ping_ms: Optional[int] = None
    password: str = ""
    ssh_password: str = ""
    provider_password: str = ""
    extra: dict = field(default_factory=dict)

    # attribute name -> persisted key
    SECRET_FIELDS = {
        "password": "password",
        "ssh_password": "sshPassword",
        "provider_password": "providerPassword",
    }
    _KNOWN = {"id", "name", "ip", "sshPort", "status", "lastPingMs",
              "password", "sshPassword", "providerPassword"}

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "name": self.name,
            "ip": self.ip,
            "sshPort": self.ssh_port,
            "status": self.status.value,
            "lastPingMs": self.last_ping_ms,
            "password": self.password,
            "sshPassword": self.ssh_password,
            "providerPassword": self.provider_password,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Server":
        try:
            status = ServerStatus(data.get("status", ServerStatus.STOPPED.value))
        except ValueError:
            status = ServerStatus.STOPPED
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            ip=str(data.get("ip", "")),
            ssh_port=_int_or_none(data.get("sshPort")) or 22,
            status=status,
            last_ping_ms=_int_or_none(data.get("lastPingMs")),
            password=data.get("password") or "",
            ssh_password=data.get("sshPassword") or "",
            provider_password=data.get("providerPassword") or "",
            extra=_pop_extra(data, cls._KNOWN),
        )


@dataclass
class Provider:
    """A hosting or registrar account."""

    id: str
    name: str
    password: str = ""
    extra: dict = field(default_factory=dict)

    SECRET_FIELDS = {"password": "password"}
    _KNOWN = {"id", "name", "password"}

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({"id": self.id, "name": self.name, "password": self.password})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Provider":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            password=data.get("password") or "",
            extra=_pop_extra(data, cls._KNOWN),
        )


@dataclass
class Domain:
    """A monitored domain and its last known registration/DNS data."""

    id: str
    name: str
    registrar: str = ""
    dns_provider: str = ""
    expiration_date: Optional[str] = None
    records: list[DnsRecord] = field(default_factory=list)
    status: list[str] = field(default_factory=list)
    state: Optional[DomainState] = None
    days_remaining: Optional[int] = None
    name_servers: list[str] = field(default_factory=list)
    disable_auto_overwrite: bool = False
    last_sync_at: Optional[int] = None
    last_sync_error: Optional[str] = None
    extra: dict = field(default_factory=dict)

    _KNOWN = {"id", "name", "registrar", "dnsProvider", "expirationDate", "records",
              "status", "state", "daysRemaining", "nameServers",
              "disableAutoOverwrite", "lastSyncAt", "lastSyncError"}

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "name": self.name,
            "registrar": self.registrar,
            "dnsProvider": self.dns_provider,
            "expirationDate": self.expiration_date or "",
            "records": [r.to_dict() for r in self.records],
            "status": list(self.status),
            "state": self.state.value if self.state else None,
            "daysRemaining": self.days_remaining,
            "nameServers": list(self.name_servers),
            "disableAutoOverwrite": self.disable_auto_overwrite,
            "lastSyncAt": self.last_sync_at,
            "lastSyncError": self.last_sync_error,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Domain":
        state = None
        if data.get("state"):
            try:
                state = DomainState(data["state"])
            except ValueError:
                state = None
        status = data.get("status") or []
        if isinstance(status, str):
            status = [status]
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            registrar=data.get("registrar") or "",
            dns_provider=data.get("dnsProvider") or "",
            expiration_date=data.get("expirationDate") or None,
            records=[DnsRecord.from_dict(r) for r in data.get("records") or [] if isinstance(r, dict)],
            status=[str(s) for s in status],
            state=state,
            days_remaining=_int_or_none(data.get("daysRemaining")),
            name_servers=[str(ns) for ns in data.get("nameServers") or []],
            disable_auto_overwrite=bool(data.get("disableAutoOverwrite", False)),
            last_sync_at=_int_or_none(data.get("lastSyncAt")),
            last_sync_error=data.get("lastSyncError") or None,
            extra=_pop_extra(data, cls._KNOWN),
        )


@dataclass
class BarkSettings:
    """Bark push channel settings."""

    enabled: bool = False
    server_url: str = "https://api.day.app"
    key: str = ""

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "serverUrl": self.server_url, "key": self.key}

    @classmethod
    def from_dict(cls, data: dict) -> "BarkSettings":
        return cls(
            enabled=bool(data.get("enabled", False)),
            server_url=data.get("serverUrl") or "https://api.day.app",
            key=data.get("key") or "",
        )


@dataclass
class SmtpSettings:
    """SMTP email channel settings."""

    enabled: bool = False
    host: str = "smtp.gmail.com"
    port: int = 587
    secure: bool = False
    username: str = ""
    password: str = ""
    from_email: str = ""

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "host": self.host,
            "port": self.port,
            "secure": self.secure,
            "username": self.username,
            "password": self.password,
            "fromEmail": self.from_email,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SmtpSettings":
        return cls(
            enabled=bool(data.get("enabled", False)),
            host=data.get("host") or "smtp.gmail.com",
            port=_int_or_none(data.get("port")) or 587,
            secure=bool(data.get("secure", False)),
            username=data.get("username") or "",
            password=data.get("password") or "",
            from_email=data.get("fromEmail") or "",
        )

    @property
    def sender(self) -> str:
        return self.from_email or self.username


@dataclass
class NotificationPreferences:
    """Which events produce notifications."""

    notify_server_down: bool = True
    notify_domain_expiring: bool = True

    def to_dict(self) -> dict:
        return {
            "notifyServerDown": self.notify_server_down,
            "notifyDomainExpiring": self.notify_domain_expiring,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationPreferences":
        return cls(
            notify_server_down=data.get("notifyServerDown", True) is not False,
            notify_domain_expiring=data.get("notifyDomainExpiring", True) is not False,
        )


@dataclass
class NotificationSettings:
    """All notification channel settings of a tenant."""

    bark: BarkSettings = field(default_factory=BarkSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)

    def to_dict(self) -> dict:
        return {
            "bark": self.bark.to_dict(),
            "smtp": self.smtp.to_dict(),
            "preferences": self.preferences.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationSettings":
        return cls(
            bark=BarkSettings.from_dict(data.get("bark") or {}),
            smtp=SmtpSettings.from_dict(data.get("smtp") or {}),
            preferences=NotificationPreferences.from_dict(data.get("preferences") or {}),
        )


@dataclass
class Settings:
    """Tenant settings."""

    whois_api_base_url: str = ""
    whois_api_key: str = ""
    whois_api_method: str = "GET"
    server_auto_check_enabled: bool = False
    server_auto_check_interval_hours: int = 6
    server_auto_check_last_at: int = 0
    domain_auto_check_enabled: bool = False
    domain_auto_check_frequency: CheckFrequency = CheckFrequency.DAILY
    domain_auto_check_last_at: int = 0
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    language: str = "en"
    extra: dict = field(default_factory=dict)

    _KNOWN = {"whoisApiBaseUrl", "whoisApiKey", "whoisApiMethod",
              "serverAutoCheckEnabled", "serverAutoCheckIntervalHours",
              "serverAutoCheckLastAt", "domainAutoCheckEnabled",
              "domainAutoCheckFrequency", "domainAutoCheckLastAt",
              "notifications", "language"}

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "whoisApiBaseUrl": self.whois_api_base_url,
            "whoisApiKey": self.whois_api_key,
            "whoisApiMethod": self.whois_api_method,
            "serverAutoCheckEnabled": self.server_auto_check_enabled,
            "serverAutoCheckIntervalHours": self.server_auto_check_interval_hours,
            "serverAutoCheckLastAt": self.server_auto_check_last_at,
            "domainAutoCheckEnabled": self.domain_auto_check_enabled,
            "domainAutoCheckFrequency": self.domain_auto_check_frequency.value,
            "domainAutoCheckLastAt": self.domain_auto_check_last_at,
            "notifications": self.notifications.to_dict(),
            "language": self.language,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        try:
            frequency = CheckFrequency(data.get("domainAutoCheckFrequency") or "daily")
        except ValueError:
            frequency = CheckFrequency.DAILY
        interval = _int_or_none(data.get("serverAutoCheckIntervalHours"))
        return cls(
            whois_api_base_url=data.get("whoisApiBaseUrl") or "",
            whois_api_key=data.get("whoisApiKey") or "",
            whois_api_method=_api_method(data.get("whoisApiMethod")),
            server_auto_check_enabled=bool(data.get("serverAutoCheckEnabled", False)),
            server_auto_check_interval_hours=6 if interval is None else interval,
            server_auto_check_last_at=_int_or_none(data.get("serverAutoCheckLastAt")) or 0,
            domain_auto_check_enabled=bool(data.get("domainAutoCheckEnabled", False)),
            domain_auto_check_frequency=frequency,
            domain_auto_check_last_at=_int_or_none(data.get("domainAutoCheckLastAt")) or 0,
            notifications=NotificationSettings.from_dict(data.get("notifications") or {}),
            language=data.get("language") if data.get("language") in ("en", "zh") else "en",
            extra=_pop_extra(data, cls._KNOWN),
        )


@dataclass(frozen=True)
class ExpiringItem:
    """A domain reported by a domain check as close to (or past) expiry."""

    name: str
    expiration_date: str
    days: int

    def to_dict(self) -> dict:
        return {"name": self.name, "expirationDate": self.expiration_date, "days": self.days}

    @classmethod
    def from_dict(cls, data: dict) -> "ExpiringItem":
        return cls(
            name=str(data.get("name", "")),
            expiration_date=str(data.get("expirationDate", "")),
            days=_int_or_none(data.get("days")) or 0,
        )


@dataclass(frozen=True)
class CheckLogEntry:
    """Immutable summary of one batch check."""

    id: str
    timestamp: int
    type: CheckType
    trigger: CheckTrigger
    total: int
    success: int
    failed: int
    duration: int
    failed_items: tuple[str, ...] = ()
    expiring_items: tuple[ExpiringItem, ...] = ()
    errors: tuple[str, ...] = ()
    notification_sent: bool = False

    def with_notification_sent(self, sent: bool) -> "CheckLogEntry":
        return replace(self, notification_sent=sent)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "trigger": self.trigger.value,
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "duration": self.duration,
            "notificationSent": self.notification_sent,
        }
        if self.type is CheckType.SERVER:
            data["failedItems"] = list(self.failed_items)
        else:
            data["expiringItems"] = [item.to_dict() for item in self.expiring_items]
        if self.errors:
            data["errors"] = list(self.errors)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CheckLogEntry":
        return cls(
            id=str(data.get("id", "")),
            timestamp=_int_or_none(data.get("timestamp")) or 0,
            type=CheckType(data.get("type", CheckType.SERVER.value)),
            trigger=CheckTrigger(data.get("trigger", CheckTrigger.MANUAL.value)),
            total=_int_or_none(data.get("total")) or 0,
            success=_int_or_none(data.get("success")) or 0,
            failed=_int_or_none(data.get("failed")) or 0,
            duration=_int_or_none(data.get("duration")) or 0,
            failed_items=tuple(str(i) for i in data.get("failedItems") or []),
            expiring_items=tuple(
                ExpiringItem.from_dict(i) for i in data.get("expiringItems") or [] if isinstance(i, dict)
            ),
            errors=tuple(str(e) for e in data.get("errors") or []),
            notification_sent=bool(data.get("notificationSent", False)),
        )


@dataclass
class TenantDocument:
    """Everything one tenant owns."""

    servers: list[Server] = field(default_factory=list)
    domains: list[Domain] = field(default_factory=list)
    providers: list[Provider] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)
    check_logs: list[CheckLogEntry] = field(default_factory=list)

    def find_server(self, server_id: str) -> Optional[Server]:
        return next((s for s in self.servers if s.id == server_id), None)

    def find_domain(self, domain_id: str) -> Optional[Domain]:
        return next((d for d in self.domains if d.id == domain_id), None)

    def find_provider(self, provider_id: str) -> Optional[Provider]:
        return next((p for p in self.providers if p.id == provider_id), None)

    def to_dict(self) -> dict:
        return {
            "servers": [s.to_dict() for s in self.servers],
            "domains": [d.to_dict() for d in self.domains],
            "providers": [p.to_dict() for p in self.providers],
            "settings": self.settings.to_dict(),
            "checkLogs": [e.to_dict() for e in self.check_logs],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TenantDocument":
        return cls(
            servers=[Server.from_dict(s) for s in data.get("servers") or [] if isinstance(s, dict)],
            domains=[Domain.from_dict(d) for d in data.get("domains") or [] if isinstance(d, dict)],
            providers=[Provider.from_dict(p) for p in data.get("providers") or [] if isinstance(p, dict)],
            settings=Settings.from_dict(data.get("settings") or {}),
            check_logs=[CheckLogEntry.from_dict(e) for e in data.get("checkLogs") or [] if isinstance(e, dict)],
        )


class PatchKind(Enum):
    """How a partial update treats a secret field."""

    KEEP = "keep"
    CLEAR = "clear"
    SET = "set"


# Values a client echoes back for "unchanged" when it only holds a mask.
KEEP_PLACEHOLDERS = frozenset({"********", "__KEEP__"})


@dataclass(frozen=True)
class SecretPatch:
    """
    Tri-state update for one secret field.

    An absent field or a mask placeholder keeps the stored value, an explicit
    empty string clears it, anything else replaces it.
    """

    kind: PatchKind
    value: str = ""

    @classmethod
    def keep(cls) -> "SecretPatch":
        return cls(PatchKind.KEEP)

    @classmethod
    def clear(cls) -> "SecretPatch":
        return cls(PatchKind.CLEAR)

    @classmethod
    def set(cls, value: str) -> "SecretPatch":
        return cls(PatchKind.SET, value)

    @classmethod
    def from_input(cls, payload: dict, key: str) -> "SecretPatch":
        """Interpret ``payload[key]`` from a partial update body."""
        if key not in payload or payload[key] is None:
            return cls.keep()
        value = str(payload[key])
        if value in KEEP_PLACEHOLDERS:
            return cls.keep()
        if value == "":
            return cls.clear()
        return cls.set(value)

    def apply(self, current: str) -> str:
        if self.kind is PatchKind.KEEP:
            return current
        if self.kind is PatchKind.CLEAR:
            return ""
        return self.value


def apply_server_secrets(server: Server, payload: dict) -> Server:
    """Merge secret fields of a partial server update into ``server``."""
    changes = {
        attr: SecretPatch.from_input(payload, key).apply(getattr(server, attr))
        for attr, key in Server.SECRET_FIELDS.items()
    }
    return replace(server, **changes)


def apply_provider_secrets(provider: Provider, payload: dict) -> Provider:
    """Merge the secret field of a partial provider update into ``provider``."""
    return replace(
        provider,
        password=SecretPatch.from_input(payload, "password").apply(provider.password),
    )


def apply_settings_secrets(settings: Settings, payload: dict) -> Settings:
    """Merge secret fields of a partial settings update into ``settings``.

    ``payload`` uses the persisted camelCase layout.
    """
    notifications = payload.get("notifications") or {}
    bark = replace(
        settings.notifications.bark,
        key=SecretPatch.from_input(notifications.get("bark") or {}, "key").apply(
            settings.notifications.bark.key
        ),
    )
    smtp = replace(
        settings.notifications.smtp,
        password=SecretPatch.from_input(notifications.get("smtp") or {}, "password").apply(
            settings.notifications.smtp.password
        ),
    )
    return replace(
        settings,
        whois_api_key=SecretPatch.from_input(payload, "whoisApiKey").apply(settings.whois_api_key),
        notifications=replace(settings.notifications, bark=bark, smtp=smtp),
    )
