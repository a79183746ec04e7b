"""
Bounded per-tenant check log.

Each batch check leaves one immutable entry. Entries are kept newest-first
and capped at ``MAX_ENTRIES`` per tenant. Every mutation runs in its own
tenant transaction, so concurrent appends never lose each other.
"""

import math
import secrets
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from .enums import CheckType
from .exceptions import ValidationError
from .models import CheckLogEntry
from .tenant_store import TenantStore

MAX_ENTRIES = 100
DEFAULT_PAGE_SIZE = 5
MAX_PAGE_SIZE = 50


def new_entry_id(now_ms: Optional[int] = None) -> str:
    ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"{ms}_{secrets.token_hex(5)}"


def prepend_bounded(
    logs: Sequence[CheckLogEntry],
    entry: CheckLogEntry,
    limit: int = MAX_ENTRIES,
) -> list[CheckLogEntry]:
    return [entry, *logs][:limit]


@dataclass(frozen=True)
class LogPage:
    logs: list[CheckLogEntry]
    page: int
    page_size: int
    total: int
    total_pages: int

    def to_dict(self) -> dict:
        return {
            "logs": [entry.to_dict() for entry in self.logs],
            "pagination": {
                "page": self.page,
                "pageSize": self.page_size,
                "total": self.total,
                "totalPages": self.total_pages,
            },
        }


def paginate(
    logs: Sequence[CheckLogEntry],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    type_filter: Optional[CheckType] = None,
) -> LogPage:
    """Slice ``logs`` into one page; page is floored at 1, page size clamped to 1..50."""
    page = max(1, int(page))
    page_size = max(1, min(MAX_PAGE_SIZE, int(page_size)))
    filtered = [e for e in logs if type_filter is None or e.type is type_filter]
    start = (page - 1) * page_size
    return LogPage(
        logs=filtered[start:start + page_size],
        page=page,
        page_size=page_size,
        total=len(filtered),
        total_pages=math.ceil(len(filtered) / page_size),
    )


def parse_type_filter(value: Optional[str]) -> Optional[CheckType]:
    if not value:
        return None
    try:
        return CheckType(value)
    except ValueError as e:
        raise ValidationError(code="invalid", message=f"Unknown check type: {value}") from e


class CheckLogStore:
    """Appends, queries and annotates check log entries."""

    def __init__(self, store: TenantStore, limit: int = MAX_ENTRIES) -> None:
        self._store = store
        self._limit = limit

    async def append(self, tenant_id: str, entry: CheckLogEntry) -> CheckLogEntry:
        async with self._store.transaction(tenant_id) as document:
            document.check_logs = prepend_bounded(document.check_logs, entry, self._limit)
        return entry

    def query(
        self,
        tenant_id: str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        type_filter: Optional[CheckType] = None,
    ) -> LogPage:
        return paginate(self._store.load(tenant_id).check_logs, page, page_size, type_filter)

    async def mark_notification_sent(self, tenant_id: str, entry_id: str, sent: bool) -> bool:
        """
        Record the notification outcome on the entry with ``entry_id``.

        Returns:
            False if the entry was already evicted
        """
        async with self._store.transaction(tenant_id) as document:
            for index, entry in enumerate(document.check_logs):
                if entry.id == entry_id:
                    document.check_logs[index] = entry.with_notification_sent(sent)
                    return True
        return False
