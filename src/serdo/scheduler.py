"""
Periodic auto-check scheduler.

Every tick (five minutes by default) walks all tenants and runs the server
and/or domain check for each tenant whose auto-check is enabled and due:

    due  <=>  now - last_run_at >= interval

Server intervals are configured in hours (at least one); domain intervals
are daily, weekly or monthly (1, 7, 30 days). Due checks go through the same
``CheckService`` pipeline as manual checks, with ``trigger=auto``. Tenants
are processed concurrently and a failing tenant never stops the tick.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .audit_logger import AuditLogger
from .config import SchedulerConfig
from .enums import CheckFrequency, CheckTrigger, CheckType
from .models import Settings

if TYPE_CHECKING:
    from .checks import CheckService
    from .tenant_store import TenantStore

HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS
DEFAULT_SERVER_INTERVAL_HOURS = 6

FREQUENCY_DAYS = {
    CheckFrequency.DAILY: 1,
    CheckFrequency.WEEKLY: 7,
    CheckFrequency.MONTHLY: 30,
}


def server_interval_ms(interval_hours: Optional[int]) -> int:
    hours = interval_hours if interval_hours else DEFAULT_SERVER_INTERVAL_HOURS
    return max(1, int(hours)) * HOUR_MS


def domain_interval_ms(frequency: CheckFrequency) -> int:
    return FREQUENCY_DAYS.get(frequency, 1) * DAY_MS


def is_due(last_run_at: int, interval_ms: int, now_ms: int) -> bool:
    return now_ms - (last_run_at or 0) >= interval_ms


def next_check_at(enabled: bool, last_run_at: int, interval_ms: int) -> int:
    """Epoch ms of the next due time, 0 when auto-check is disabled."""
    return (last_run_at or 0) + interval_ms if enabled else 0


def due_checks(settings: Settings, now_ms: int) -> list[CheckType]:
    """Check kinds that are enabled and due for a tenant."""
    due = []
    if settings.server_auto_check_enabled and is_due(
        settings.server_auto_check_last_at,
        server_interval_ms(settings.server_auto_check_interval_hours),
        now_ms,
    ):
        due.append(CheckType.SERVER)
    if settings.domain_auto_check_enabled and is_due(
        settings.domain_auto_check_last_at,
        domain_interval_ms(settings.domain_auto_check_frequency),
        now_ms,
    ):
        due.append(CheckType.DOMAIN)
    return due


@dataclass
class TickReport:
    """What one tick ran, per tenant."""

    ran: dict[str, list[CheckType]] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)


class Scheduler:
    """Fixed-period loop driving auto-checks for every tenant."""

    def __init__(
        self,
        service: "CheckService",
        store: "TenantStore",
        config: Optional[SchedulerConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._service = service
        self._store = store
        self._config = config or SchedulerConfig()
        self._logger = logger
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def run_tenant(self, tenant_id: str, now_ms: int) -> list[CheckType]:
        settings = self._store.load(tenant_id).settings
        due = due_checks(settings, now_ms)
        if CheckType.SERVER in due:
            await self._service.check_servers(tenant_id, CheckTrigger.AUTO)
        if CheckType.DOMAIN in due:
            await self._service.check_domains(tenant_id, CheckTrigger.AUTO)
        return due

    async def tick(self, now_ms: Optional[int] = None) -> TickReport:
        """Run every due check once across all tenants."""
        now = int(time.time() * 1000) if now_ms is None else now_ms
        tenants = self._store.list_tenants()
        outcomes = await asyncio.gather(
            *(self.run_tenant(tenant_id, now) for tenant_id in tenants),
            return_exceptions=True,
        )

        report = TickReport()
        for tenant_id, outcome in zip(tenants, outcomes):
            if isinstance(outcome, Exception):
                report.failed[tenant_id] = f"{type(outcome).__name__}: {outcome}"
                if self._logger:
                    self._logger.log_error(
                        component="Scheduler",
                        message=f"Auto-check failed for tenant {tenant_id}",
                        error=outcome,
                        additional_data={"tenant_id": tenant_id},
                    )
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome:
                report.ran[tenant_id] = outcome
        return report

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Tick until ``stop()`` is called or ``stop_event`` is set.

        Args:
            stop_event: Optional event to signal the scheduler to stop
        """
        self._running = True
        stop_event = stop_event or asyncio.Event()
        self._stop_event = stop_event
        if self._logger:
            self._logger.info("Scheduler", "Scheduler started",
                              {"tick_seconds": self._config.tick_seconds})

        while self._running and not stop_event.is_set():
            try:
                report = await self.tick()
                if report.ran and self._logger:
                    self._logger.info("Scheduler", "Tick completed", {
                        "ran": {t: [k.value for k in kinds] for t, kinds in report.ran.items()},
                        "failed": list(report.failed),
                    })
            except Exception as e:
                if self._logger:
                    self._logger.log_error(component="Scheduler", message="Tick failed", error=e)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._config.tick_seconds)
            except asyncio.TimeoutError:
                pass

        self._running = False
        self._stop_event = None

    def stop(self) -> None:
        """Signal the scheduler to stop after the current tick."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def is_running(self) -> bool:
        return self._running
