"""
Property-based tests for notification dispatch.
"""

import asyncio
from io import StringIO
from urllib.parse import unquote

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from serdo.audit_logger import AuditLogger
from serdo.config import NotificationConfig
from serdo.enums import LogLevel
from serdo.models import BarkSettings, Settings, SmtpSettings
from serdo.notifications import (
    BarkChannel,
    EmailChannel,
    NotificationChannel,
    NotificationDispatcher,
    NotificationMessage,
    bark_url,
)


def run_async(coro):
    return asyncio.run(coro)


class MockChannel:
    """Configurable in-memory channel."""

    def __init__(self, name: str, outcome="ok", delay: float = 0.0) -> None:
        self.name = name
        self.outcome = outcome
        self.delay = delay
        self.sent: list = []

    async def send(self, message: NotificationMessage) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        self.sent.append(message)
        return self.outcome == "ok"

    def get_name(self) -> str:
        return self.name


def dispatcher_with(channels: list, timeout: float = 5.0, logger=None) -> NotificationDispatcher:
    return NotificationDispatcher(
        NotificationConfig(dispatch_timeout_seconds=timeout),
        logger=logger,
        channel_factory=lambda _settings: channels,
    )


MESSAGE = NotificationMessage("Server down alert", "Server: web | Checked at: now")


class TestDispatchProperty:
    """A dispatch succeeds when at least one channel delivers."""

    @given(outcomes=st.lists(st.sampled_from(["ok", "fail", "raise"]), min_size=1, max_size=5))
    @settings(max_examples=50, deadline=None)
    def test_any_success(self, outcomes: list) -> None:
        channels = [
            MockChannel(f"c{i}", RuntimeError("smtp down") if o == "raise" else o)
            for i, o in enumerate(outcomes)
        ]
        results = run_async(dispatcher_with(channels).dispatch(Settings(), MESSAGE))

        assert [r.channel for r in results] == [c.name for c in channels]
        assert [r.success for r in results] == [o == "ok" for o in outcomes]
        for result, outcome in zip(results, outcomes):
            if outcome == "raise":
                assert result.error == "RuntimeError: smtp down"
        sent = run_async(dispatcher_with(channels).send(Settings(), MESSAGE.title, MESSAGE.body))
        assert sent == ("ok" in outcomes)

    def test_no_channels(self) -> None:
        assert run_async(dispatcher_with([]).dispatch(Settings(), MESSAGE)) == []
        assert run_async(dispatcher_with([]).send(Settings(), "t", "b")) is False

    def test_slow_channel_times_out(self) -> None:
        logger = AuditLogger(output_stream=StringIO())
        fast = MockChannel("fast")
        slow = MockChannel("slow", delay=5.0)
        results = run_async(dispatcher_with([fast, slow], timeout=0.1, logger=logger).dispatch(Settings(), MESSAGE))

        assert results[0].success
        assert not results[1].success
        assert results[1].error == "timeout"
        assert any(e.level == LogLevel.ERROR and "slow" in e.message for e in logger.entries)

    def test_mock_channel_satisfies_protocol(self) -> None:
        assert isinstance(MockChannel("x"), NotificationChannel)


class TestChannelSelectionProperty:
    """Only enabled, fully configured channels are built."""

    @given(bark_enabled=st.booleans(), bark_key=st.sampled_from(["", "key"]),
           smtp_enabled=st.booleans(), sender=st.sampled_from(["", "ops@example.com"]))
    @settings(max_examples=50)
    def test_channels_for(self, bark_enabled: bool, bark_key: str, smtp_enabled: bool, sender: str) -> None:
        settings_ = Settings()
        settings_.notifications.bark = BarkSettings(enabled=bark_enabled, key=bark_key)
        settings_.notifications.smtp = SmtpSettings(enabled=smtp_enabled, username=sender)
        names = [c.get_name() for c in NotificationDispatcher().channels_for(settings_)]

        expected = []
        if bark_enabled and bark_key:
            expected.append("bark")
        if smtp_enabled and sender:
            expected.append("email")
        assert names == expected


class TestBarkProperty:
    """Bark URLs carry each segment percent-encoded."""

    @given(key=st.text(min_size=1, max_size=20), title=st.text(max_size=30), body=st.text(max_size=60))
    @settings(max_examples=100)
    def test_segments_round_trip(self, key: str, title: str, body: str) -> None:
        url = bark_url("https://api.day.app/", key, title, body)
        segments = url[len("https://api.day.app/"):].split("/")
        assert len(segments) == 3
        assert [unquote(s) for s in segments] == [key, title, body]

    def test_encoding_matches_uri_component(self) -> None:
        assert bark_url("https://b.example", "k", "a b", "x/y!") == "https://b.example/k/a%20b/x%2Fy!"

    def test_send_uses_get(self) -> None:
        requests: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"code": 200})

        channel = BarkChannel(BarkSettings(enabled=True, server_url="https://b.example", key="k"),
                              transport=httpx.MockTransport(handler))
        assert run_async(channel.send(NotificationMessage("Title", "Body text")))
        assert requests[0].method == "GET"
        assert requests[0].url.raw_path == b"/k/Title/Body%20text"

    def test_http_error_is_failure(self) -> None:
        channel = BarkChannel(BarkSettings(enabled=True, key="k"),
                              transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        assert run_async(channel.send(MESSAGE)) is False


class FakeSMTP:
    """Stands in for smtplib.SMTP / SMTP_SSL and records the session."""

    instances: list = []

    def __init__(self, host, port, timeout=None, context=None) -> None:
        self.host = host
        self.port = port
        self.implicit_tls = context is not None
        self.calls: list = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.calls.append("quit")

    def ehlo(self) -> None:
        self.calls.append("ehlo")

    def has_extn(self, name: str) -> bool:
        return name == "starttls"

    def starttls(self, context=None) -> None:
        self.calls.append("starttls")

    def login(self, user: str, password: str) -> None:
        self.calls.append(("login", user, password))

    def sendmail(self, sender: str, recipients: list, body: str) -> None:
        self.calls.append(("sendmail", sender, tuple(recipients), body))


class TestEmailProperty:
    def setup_method(self) -> None:
        FakeSMTP.instances = []

    def test_starttls_on_587(self, monkeypatch) -> None:
        monkeypatch.setattr("serdo.notifications.smtplib.SMTP", FakeSMTP)
        channel = EmailChannel(SmtpSettings(enabled=True, port=587, username="u@example.com", password="pw"))
        assert run_async(channel.send(MESSAGE))

        smtp = FakeSMTP.instances[0]
        assert not smtp.implicit_tls
        assert smtp.calls[:3] == ["ehlo", "starttls", "ehlo"]
        assert ("login", "u@example.com", "pw") in smtp.calls
        sendmail = next(c for c in smtp.calls if isinstance(c, tuple) and c[0] == "sendmail")
        assert sendmail[1] == "u@example.com"
        assert sendmail[2] == ("u@example.com",)
        assert "Subject: Server down alert" in sendmail[3]

    def test_implicit_tls_on_465(self, monkeypatch) -> None:
        monkeypatch.setattr("serdo.notifications.smtplib.SMTP_SSL", FakeSMTP)
        channel = EmailChannel(SmtpSettings(enabled=True, port=465, from_email="alerts@example.com"))
        assert run_async(channel.send(MESSAGE))

        smtp = FakeSMTP.instances[0]
        assert smtp.implicit_tls
        assert not any(isinstance(c, tuple) and c[0] == "login" for c in smtp.calls)
