"""
Domain health classification.

``classify`` is a pure function of the registry status codes, the DNS records
and the expiration date. The first matching rule wins:

    no DNS records            -> no_dns
    client/server hold        -> suspended
    pending delete            -> pending_delete
    redemption period         -> redemption
    days remaining < 0        -> expired
    days remaining <= 30      -> expiring_soon
    otherwise                 -> normal
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from .enums import DomainState

EXPIRING_SOON_DAYS = 30

_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")

_HOLD_MARKERS = ("clienthold", "serverhold", "client hold", "server hold")
_PENDING_DELETE_MARKERS = ("pendingdelete", "pending delete")
_REDEMPTION_MARKERS = ("redemption",)


@dataclass(frozen=True)
class Classification:
    state: DomainState
    days_remaining: Optional[int]


def parse_expiration(expiration_date: Optional[str]) -> Optional[datetime]:
    """UTC midnight of a ``YYYY-MM-DD`` date (time suffix ignored), or None."""
    if not expiration_date:
        return None
    match = _DATE_RE.match(expiration_date.strip())
    if not match:
        return None
    try:
        return datetime(int(match[1]), int(match[2]), int(match[3]), tzinfo=timezone.utc)
    except ValueError:
        return None


def days_until(expiration_date: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days from ``now`` to the expiration date, floored; None without a valid date."""
    expires = parse_expiration(expiration_date)
    if expires is None:
        return None
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return math.floor((expires - current).total_seconds() / 86400)


def _has_marker(status_codes: Sequence[str], markers: tuple[str, ...]) -> bool:
    lowered = [str(code).lower() for code in status_codes]
    return any(marker in code for code in lowered for marker in markers)


def classify(
    status_codes: Optional[Sequence[str]],
    dns_records: Optional[Sequence[object]],
    expiration_date: Optional[str],
    now: Optional[datetime] = None,
) -> Classification:
    """Derive a domain's health state and days remaining."""
    status_codes = status_codes or []
    days = days_until(expiration_date, now)

    if not dns_records:
        return Classification(DomainState.NO_DNS, days)
    if _has_marker(status_codes, _HOLD_MARKERS):
        return Classification(DomainState.SUSPENDED, days)
    if _has_marker(status_codes, _PENDING_DELETE_MARKERS):
        return Classification(DomainState.PENDING_DELETE, days)
    if _has_marker(status_codes, _REDEMPTION_MARKERS):
        return Classification(DomainState.REDEMPTION, days)
    if days is not None:
        if days < 0:
            return Classification(DomainState.EXPIRED, days)
        if days <= EXPIRING_SOON_DAYS:
            return Classification(DomainState.EXPIRING_SOON, days)
    return Classification(DomainState.NORMAL, days)
