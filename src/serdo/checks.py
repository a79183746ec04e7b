"""
Check service: the operations serdo exposes.

Coordinates the components for one tenant at a time:
- server checks: Prober -> persist status -> check log -> notification
- domain checks: WhoisGateway -> DomainStateEngine -> persist -> check log -> notification
- single-domain sync with strict validation and the overwrite lock
- check log queries, auto-check status, configuration tests, secret reveal

Manual and scheduled checks share this pipeline; only the trigger differs.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from .audit_logger import AuditLogger
from .auth import TokenSigner, UserStore
from .check_log import CheckLogStore, LogPage, new_entry_id
from .config import SystemConfig
from .domain_state import EXPIRING_SOON_DAYS, classify
from .enums import CheckTrigger, CheckType, LookupErrorCode, ServerStatus, SyncErrorCode
from .exceptions import (
    NotFoundError,
    NotificationError,
    SyncDataError,
    SyncError,
    SyncNetworkError,
    SyncUpstreamError,
)
from .i18n import get_message
from .models import (
    CheckLogEntry,
    Domain,
    ExpiringItem,
    Server,
    Settings,
)
from .notifications import NotificationDispatcher, NotificationMessage, NotificationResult
from .prober import Prober, ProbeResult
from .reveal import RevealSession, SecretRef
from .scheduler import domain_interval_ms, next_check_at, server_interval_ms
from .secret_codec import SealedSecret, SecretCodec
from .tenant_store import TenantStore
from .whois_gateway import LookupResult, WhoisGateway, is_valid_date_string, link_records


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ServerCheckResult:
    id: str
    name: str
    reachable: bool
    port: Optional[int] = None
    latency_ms: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "reachable": self.reachable,
            "port": self.port,
            "latencyMs": self.latency_ms,
            "error": self.error,
        }


@dataclass
class DomainCheckResult:
    id: str
    name: str
    ok: bool
    state: Optional[str] = None
    days_remaining: Optional[int] = None
    expiration_date: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "ok": self.ok,
            "state": self.state,
            "daysRemaining": self.days_remaining,
            "expirationDate": self.expiration_date,
            "error": self.error,
        }


def apply_lookup(
    domain: Domain,
    result: LookupResult,
    servers: Sequence[Server],
    now_ms: int,
    strict: bool = False,
) -> Domain:
    """
    Merge a successful lookup into ``domain``.

    Records, status, name servers and the derived state always refresh.
    With ``disable_auto_overwrite`` set, expiration date, registrar and DNS
    provider keep their stored values. ``strict`` (single-domain sync)
    rejects a lookup without DNS records, and, unless the domain is locked,
    one without a valid expiration date.

    Raises:
        SyncDataError: ``dns_empty`` or ``whois_expiration_invalid`` in strict mode
    """
    locked = domain.disable_auto_overwrite
    whois = result.whois
    new_expiration = whois.expiration_date if whois else None

    if strict and not result.records:
        raise SyncDataError(
            code=SyncErrorCode.DNS_EMPTY.value,
            message="No DNS records returned, check that the domain is configured",
            details={"domain": domain.name},
            status=502,
        )
    if strict and not locked and not is_valid_date_string(new_expiration):
        raise SyncDataError(
            code=SyncErrorCode.WHOIS_EXPIRATION_INVALID.value,
            message="Could not determine the domain expiration date",
            details={"received": new_expiration, "whois": whois.to_dict() if whois else None},
            status=502,
        )

    if result.dns_error is not None and not result.records:
        records = list(domain.records)
    else:
        records = link_records(result.records, servers)

    if locked:
        expiration = domain.expiration_date
        registrar = domain.registrar
    else:
        expiration = new_expiration if is_valid_date_string(new_expiration) else domain.expiration_date
        registrar = (whois.registrar if whois else None) or domain.registrar

    if whois is not None:
        status = list(whois.status)
        name_servers = list(whois.name_servers) or list(domain.name_servers)
    else:
        status = list(domain.status) or ["active"]
        name_servers = list(domain.name_servers)

    classification = classify(status, records, expiration)
    return replace(
        domain,
        records=records,
        expiration_date=expiration,
        registrar=registrar,
        status=status,
        name_servers=name_servers,
        state=classification.state,
        days_remaining=classification.days_remaining,
        last_sync_at=now_ms,
        last_sync_error=None,
    )


_TRANSPORT_CODES = {LookupErrorCode.TIMEOUT.value, LookupErrorCode.NETWORK_ERROR.value}


def lookup_failure(result: LookupResult) -> SyncError:
    """
    Sync error for a failed lookup.

    A transport failure on every request gives ``SyncNetworkError``; anything
    else (API, HTTP, body or name errors) gives ``SyncUpstreamError``. Both
    carry status 502.
    """
    error = result.error
    code = error.code if error else SyncErrorCode.LOOKUP_FAILED.value
    message = error.message if error else "Domain lookup failed"
    details = error.to_dict() if error else {}

    codes = {e.code for e in (result.dns_error, result.whois_error) if e is not None}
    if not codes and error is not None:
        codes = {error.code}
    if codes and codes <= _TRANSPORT_CODES:
        return SyncNetworkError(code=code, message=message, details=details, status=502)
    return SyncUpstreamError(code=code, message=message, details=details, status=502)


def reclassify(domain: Domain) -> Domain:
    """Recompute state and days remaining from the stored fields."""
    classification = classify(domain.status, domain.records, domain.expiration_date)
    return replace(domain, state=classification.state, days_remaining=classification.days_remaining)


def _replace_by_id(items: list, updated) -> bool:
    for index, item in enumerate(items):
        if item.id == updated.id:
            items[index] = updated
            return True
    return False


class CheckService:
    """Runs checks, syncs and queries against tenant documents."""

    def __init__(
        self,
        store: TenantStore,
        prober: Prober,
        gateway: WhoisGateway,
        dispatcher: NotificationDispatcher,
        check_log: Optional[CheckLogStore] = None,
        reveal: Optional[RevealSession] = None,
        logger: Optional[AuditLogger] = None,
        lookup_concurrency: int = 4,
    ) -> None:
        self._store = store
        self._prober = prober
        self._gateway = gateway
        self._dispatcher = dispatcher
        self._check_log = check_log or CheckLogStore(store)
        self._reveal = reveal
        self._logger = logger
        self._lookup_concurrency = max(1, lookup_concurrency)

    @classmethod
    def from_config(cls, config: SystemConfig, logger: Optional[AuditLogger] = None) -> "CheckService":
        """Wire every component from a SystemConfig."""
        codec = SecretCodec(config.security.auth_secret, logger)
        store = TenantStore(config.persistence.data_dir, codec, logger)
        reveal = RevealSession(
            store=store,
            users=UserStore(Path(config.persistence.data_dir) / "users.json"),
            tokens=TokenSigner(config.security.auth_secret, config.security.token_ttl_seconds),
            logger=logger,
        )
        return cls(
            store=store,
            prober=Prober(config.probe, logger),
            gateway=WhoisGateway(config.whois, logger),
            dispatcher=NotificationDispatcher(config.notifications, logger),
            reveal=reveal,
            logger=logger,
            lookup_concurrency=config.whois.max_concurrency,
        )

    @property
    def store(self) -> TenantStore:
        return self._store

    @property
    def check_log(self) -> CheckLogStore:
        return self._check_log

    # -- server checks -----------------------------------------------------

    async def check_servers(
        self,
        tenant_id: str,
        trigger: CheckTrigger = CheckTrigger.MANUAL,
    ) -> list[ServerCheckResult]:
        """Probe every server of the tenant, persist status and log the run."""
        started = time.monotonic()
        document = self._store.load(tenant_id)
        servers = list(document.servers)
        settings = document.settings

        probes = await self._prober.probe_servers(servers)
        results = [
            ServerCheckResult(
                id=server.id,
                name=server.name,
                reachable=probe.reachable,
                port=probe.port,
                latency_ms=probe.latency_ms,
                error=probe.error,
            )
            for server, probe in zip(servers, probes)
        ]

        now = _now_ms()
        by_id = {r.id: r for r in results}
        async with self._store.transaction(tenant_id) as current:
            for index, server in enumerate(current.servers):
                result = by_id.get(server.id)
                if result is None:
                    continue
                current.servers[index] = replace(
                    server,
                    status=ServerStatus.RUNNING if result.reachable else ServerStatus.STOPPED,
                    last_ping_ms=result.latency_ms if result.reachable else server.last_ping_ms,
                )
            current.settings.server_auto_check_last_at = now

        failed = [r for r in results if not r.reachable]
        entry = CheckLogEntry(
            id=new_entry_id(now),
            timestamp=now,
            type=CheckType.SERVER,
            trigger=trigger,
            total=len(results),
            success=len(results) - len(failed),
            failed=len(failed),
            duration=int((time.monotonic() - started) * 1000),
            failed_items=tuple(r.name for r in failed),
            errors=tuple(f"{r.name}: {r.error}" for r in results if r.error),
        )
        await self._check_log.append(tenant_id, entry)
        self._log_info("Server check completed", {
            "tenant_id": tenant_id,
            "trigger": trigger.value,
            "total": entry.total,
            "failed": entry.failed,
        })

        if failed and settings.notifications.preferences.notify_server_down:
            checked_at = datetime.fromtimestamp(now / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            body = "\n".join(
                get_message("notify.server_down.line", settings.language, name=r.name, time=checked_at)
                for r in failed
            )
            title = get_message("notify.server_down.title", settings.language)
            await self._notify_and_mark(tenant_id, entry, settings, title, body)

        return results

    async def ping_server(self, tenant_id: str, server_id: str) -> ProbeResult:
        """Probe one server and persist its status and latency."""
        document = self._store.load(tenant_id)
        server = document.find_server(server_id)
        if server is None:
            raise NotFoundError(code="not_found", message=f"Server not found: {server_id}")

        probe = await self._prober.probe_server(server)
        async with self._store.transaction(tenant_id) as current:
            stored = current.find_server(server_id)
            if stored is not None:
                _replace_by_id(current.servers, replace(
                    stored,
                    status=ServerStatus.RUNNING if probe.reachable else ServerStatus.STOPPED,
                    last_ping_ms=probe.latency_ms,
                ))
        return probe

    # -- domain checks -----------------------------------------------------

    async def _lookup_all(self, domains: Sequence[Domain], settings: Settings) -> list:
        semaphore = asyncio.Semaphore(self._lookup_concurrency)

        async def lookup(domain: Domain) -> LookupResult:
            async with semaphore:
                return await self._gateway.lookup(domain.name, settings)

        return await asyncio.gather(*(lookup(d) for d in domains), return_exceptions=True)

    async def check_domains(
        self,
        tenant_id: str,
        trigger: CheckTrigger = CheckTrigger.MANUAL,
    ) -> list[DomainCheckResult]:
        """Refresh every domain of the tenant, classify, persist and log the run."""
        started = time.monotonic()
        document = self._store.load(tenant_id)
        domains = list(document.domains)
        servers = list(document.servers)
        settings = document.settings

        outcomes = await self._lookup_all(domains, settings)
        now = _now_ms()

        updated: list[Domain] = []
        results: list[DomainCheckResult] = []
        errors: list[str] = []
        for domain, outcome in zip(domains, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                error = f"{type(outcome).__name__}: {outcome}"
                errors.append(f"{domain.name}: {error}")
                self._log_error(f"Lookup crashed for {domain.name}", outcome, tenant_id)
                next_domain = replace(reclassify(domain), last_sync_error=error)
                ok = False
            elif not outcome.success:
                error = outcome.error.message if outcome.error else "lookup failed"
                next_domain = replace(reclassify(domain), last_sync_error=error)
                ok = False
            else:
                error = None
                next_domain = apply_lookup(domain, outcome, servers, now)
                ok = True
            updated.append(next_domain)
            results.append(DomainCheckResult(
                id=domain.id,
                name=domain.name,
                ok=ok,
                state=next_domain.state.value if next_domain.state else None,
                days_remaining=next_domain.days_remaining,
                expiration_date=next_domain.expiration_date,
                error=error,
            ))

        async with self._store.transaction(tenant_id) as current:
            for domain in updated:
                _replace_by_id(current.domains, domain)
            current.settings.domain_auto_check_last_at = now

        expiring = tuple(
            ExpiringItem(name=d.name, expiration_date=d.expiration_date or "", days=d.days_remaining)
            for d in updated
            if d.expiration_date and d.days_remaining is not None and d.days_remaining <= EXPIRING_SOON_DAYS
        )
        succeeded = sum(1 for r in results if r.ok)
        entry = CheckLogEntry(
            id=new_entry_id(now),
            timestamp=now,
            type=CheckType.DOMAIN,
            trigger=trigger,
            total=len(results),
            success=succeeded,
            failed=len(results) - succeeded,
            duration=int((time.monotonic() - started) * 1000),
            expiring_items=expiring,
            errors=tuple(errors),
        )
        await self._check_log.append(tenant_id, entry)
        self._log_info("Domain check completed", {
            "tenant_id": tenant_id,
            "trigger": trigger.value,
            "total": entry.total,
            "failed": entry.failed,
            "expiring": len(expiring),
        })

        if expiring and settings.notifications.preferences.notify_domain_expiring:
            body = "\n".join(
                get_message("notify.domain_expiring.line", settings.language,
                            name=item.name, date=item.expiration_date)
                for item in expiring
            )
            title = get_message("notify.domain_expiring.title", settings.language)
            await self._notify_and_mark(tenant_id, entry, settings, title, body)

        return results

    async def sync_domain(self, tenant_id: str, domain_id: str) -> Domain:
        """
        Look up one domain and store the result.

        Raises:
            SyncError: ``not_found`` (404)
            SyncUpstreamError, SyncNetworkError: the lookup error code (502)
                when the lookup fails
            SyncDataError: ``dns_empty`` or ``whois_expiration_invalid`` (502)
                when the data is rejected

            Every rejection but ``not_found`` is stored in the domain's
            ``last_sync_error``.
        """
        document = self._store.load(tenant_id)
        domain = document.find_domain(domain_id)
        if domain is None:
            raise SyncError(
                code=SyncErrorCode.NOT_FOUND.value,
                message=f"Domain not found: {domain_id}",
                status=404,
            )

        result = await self._gateway.lookup(domain.name, document.settings)
        try:
            if not result.success:
                raise lookup_failure(result)
            synced = apply_lookup(domain, result, document.servers, _now_ms(), strict=True)
        except SyncError as e:
            await self._store_sync_error(tenant_id, domain_id, e.message)
            self._log_error(f"Domain sync failed for {domain.name}", e, tenant_id)
            raise

        async with self._store.transaction(tenant_id) as current:
            if not _replace_by_id(current.domains, synced):
                raise SyncError(
                    code=SyncErrorCode.NOT_FOUND.value,
                    message=f"Domain not found: {domain_id}",
                    status=404,
                )
        if self._logger:
            self._logger.audit(tenant_id, "domain_sync", {
                "domain": synced.name,
                "state": synced.state.value if synced.state else None,
                "days_remaining": synced.days_remaining,
                "records": len(synced.records),
                "source": result.source.value if result.source else None,
            })
        return synced

    async def _store_sync_error(self, tenant_id: str, domain_id: str, message: str) -> None:
        async with self._store.transaction(tenant_id) as current:
            stored = current.find_domain(domain_id)
            if stored is not None:
                _replace_by_id(current.domains, replace(stored, last_sync_error=message))

    # -- queries -------------------------------------------------------------

    def get_check_logs(
        self,
        tenant_id: str,
        page: int = 1,
        page_size: int = 5,
        type_filter: Optional[CheckType] = None,
    ) -> LogPage:
        return self._check_log.query(tenant_id, page, page_size, type_filter)

    def get_check_status(self, tenant_id: str, now_ms: Optional[int] = None) -> dict:
        """Auto-check configuration with last and next run times (epoch ms)."""
        settings = self._store.load(tenant_id).settings
        server_hours = settings.server_auto_check_interval_hours or 6
        return {
            "server": {
                "enabled": settings.server_auto_check_enabled,
                "intervalHours": server_hours,
                "lastCheckAt": settings.server_auto_check_last_at,
                "nextCheckAt": next_check_at(
                    settings.server_auto_check_enabled,
                    settings.server_auto_check_last_at,
                    server_interval_ms(server_hours),
                ),
            },
            "domain": {
                "enabled": settings.domain_auto_check_enabled,
                "frequency": settings.domain_auto_check_frequency.value,
                "lastCheckAt": settings.domain_auto_check_last_at,
                "nextCheckAt": next_check_at(
                    settings.domain_auto_check_enabled,
                    settings.domain_auto_check_last_at,
                    domain_interval_ms(settings.domain_auto_check_frequency),
                ),
            },
            "currentTime": _now_ms() if now_ms is None else now_ms,
        }

    async def test_whois(self, tenant_id: str, test_domain: str = "example.com") -> dict:
        settings = self._store.load(tenant_id).settings
        return await self._gateway.test_config(settings, test_domain)

    async def test_notifications(self, tenant_id: str) -> list[NotificationResult]:
        """
        Send a test message over every enabled channel.

        Raises:
            NotificationError: ``no_channels`` when nothing is enabled,
                ``delivery_failed`` when no channel confirmed delivery
        """
        settings = self._store.load(tenant_id).settings
        message = NotificationMessage(
            title=get_message("notify.test.title", settings.language),
            body=get_message("notify.test.body", settings.language),
        )
        results = await self._dispatcher.dispatch(settings, message)
        if not results:
            raise NotificationError(code="no_channels", message="No notification channel is enabled")
        if not any(r.success for r in results):
            raise NotificationError(
                code="delivery_failed",
                message="No notification channel confirmed delivery",
                details={"results": [r.to_dict() for r in results]},
            )
        return results

    # -- secrets -------------------------------------------------------------

    def _reveal_session(self) -> RevealSession:
        if self._reveal is None:
            raise NotImplementedError("CheckService was built without a RevealSession")
        return self._reveal

    def open_reveal_session(self, token: Optional[str], current_password: Optional[str]) -> str:
        return self._reveal_session().open_session(token, current_password)

    def reveal_secret(
        self,
        token: Optional[str],
        reveal_key: Optional[str],
        ref: SecretRef,
    ) -> Optional[SealedSecret]:
        return self._reveal_session().reveal_secret(token, reveal_key, ref)

    # -- helpers -------------------------------------------------------------

    async def _notify_and_mark(
        self,
        tenant_id: str,
        entry: CheckLogEntry,
        settings: Settings,
        title: str,
        body: str,
    ) -> bool:
        try:
            sent = await self._dispatcher.send(settings, title, body)
        except Exception as e:
            self._log_error("Notification dispatch failed", e, tenant_id)
            sent = False
        await self._check_log.mark_notification_sent(tenant_id, entry.id, sent)
        return sent

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.info("CheckService", message, data)

    def _log_error(self, message: str, error: Exception, tenant_id: str) -> None:
        if self._logger:
            self._logger.log_error(
                component="CheckService",
                message=message,
                error=error,
                additional_data={"tenant_id": tenant_id},
            )
