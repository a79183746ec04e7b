"""
Property-based tests for domain health classification.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from serdo.domain_state import EXPIRING_SOON_DAYS, classify, days_until, parse_expiration
from serdo.enums import DomainState
from serdo.models import DnsRecord

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
RECORDS = [DnsRecord(type="A", name="example.com", value="1.2.3.4")]


def date_in(days: int) -> str:
    """Expiration date ``days`` calendar days after NOW's date."""
    return (NOW.date() + timedelta(days=days)).isoformat()


hold_codes = st.sampled_from(["clientHold", "serverHold", "clienthold https://icann.org/epp#clientHold"])
neutral_codes = st.lists(
    st.sampled_from(["active", "clientTransferProhibited", "clientDeleteProhibited", "ok"]),
    max_size=3,
)


class TestRuleOrderProperty:
    """The first matching rule decides the state."""

    @given(codes=st.lists(st.text(max_size=20), max_size=4), days=st.integers(-500, 500))
    @settings(max_examples=100)
    def test_no_records_always_no_dns(self, codes: list, days: int) -> None:
        result = classify(codes, [], date_in(days), NOW)
        assert result.state == DomainState.NO_DNS

    @given(hold=hold_codes, others=neutral_codes, days=st.integers(-500, 500))
    @settings(max_examples=100)
    def test_hold_beats_expiry(self, hold: str, others: list, days: int) -> None:
        result = classify(others + [hold, "pendingDelete"], RECORDS, date_in(days), NOW)
        assert result.state == DomainState.SUSPENDED

    @given(days=st.integers(-500, 500))
    @settings(max_examples=50)
    def test_pending_delete_beats_redemption(self, days: int) -> None:
        result = classify(["redemptionPeriod", "pendingDelete"], RECORDS, date_in(days), NOW)
        assert result.state == DomainState.PENDING_DELETE

    @given(days=st.integers(-500, 500))
    @settings(max_examples=50)
    def test_redemption_beats_expiry(self, days: int) -> None:
        result = classify(["redemptionPeriod"], RECORDS, date_in(days), NOW)
        assert result.state == DomainState.REDEMPTION

    def test_case_insensitive_markers(self) -> None:
        assert classify(["CLIENTHOLD"], RECORDS, None, NOW).state == DomainState.SUSPENDED
        assert classify(["Pending Delete"], RECORDS, None, NOW).state == DomainState.PENDING_DELETE


class TestExpiryBoundaryProperty:
    """Day thresholds: negative is expired, up to 30 inclusive is expiring soon."""

    @given(codes=neutral_codes, days=st.integers(-1000, 1000))
    @settings(max_examples=200)
    def test_threshold(self, codes: list, days: int) -> None:
        result = classify(codes, RECORDS, date_in(days), NOW)
        # NOW is noon, so the floored difference is one less than the calendar distance
        remaining = days - 1
        assert result.days_remaining == remaining
        if remaining < 0:
            assert result.state == DomainState.EXPIRED
        elif remaining <= EXPIRING_SOON_DAYS:
            assert result.state == DomainState.EXPIRING_SOON
        else:
            assert result.state == DomainState.NORMAL

    def test_exact_boundaries_at_midnight(self) -> None:
        midnight = datetime(2025, 6, 15, tzinfo=timezone.utc)
        assert classify([], RECORDS, "2025-07-15", midnight).state == DomainState.EXPIRING_SOON
        assert classify([], RECORDS, "2025-07-16", midnight).state == DomainState.NORMAL
        assert classify([], RECORDS, "2025-06-15", midnight).state == DomainState.EXPIRING_SOON
        assert classify([], RECORDS, "2025-06-14", midnight).state == DomainState.EXPIRED

    def test_missing_or_invalid_date_is_normal(self) -> None:
        for value in (None, "", "not a date", "2025-13-45"):
            result = classify(["active"], RECORDS, value, NOW)
            assert result.state == DomainState.NORMAL
            assert result.days_remaining is None


class TestDateParsingProperty:
    """Expiration parsing and day counting."""

    @given(day=st.dates(min_value=datetime(1971, 1, 1).date(), max_value=datetime(2099, 12, 31).date()))
    @settings(max_examples=100)
    def test_parse_is_utc_midnight(self, day) -> None:
        parsed = parse_expiration(day.isoformat() + "T23:59:59Z")
        assert parsed == datetime(day.year, day.month, day.day, tzinfo=timezone.utc)

    def test_naive_now_is_treated_as_utc(self) -> None:
        naive = datetime(2025, 6, 15)
        assert days_until("2025-06-25", naive) == 10
