"""
Notification dispatch over Bark push and SMTP email.

Channels are built per tenant from its notification settings. A dispatch
fans out to every enabled channel concurrently, bounds the whole fan-out by
one timeout and reports success when at least one channel confirmed
delivery. Channel failures are logged and never propagate.
"""

import asyncio
import smtplib
import ssl
from abc import abstractmethod
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Callable, Optional, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from .audit_logger import AuditLogger
from .config import NotificationConfig
from .enums import LogLevel
from .models import BarkSettings, Settings, SmtpSettings

# Characters encodeURIComponent leaves alone besides alphanumerics and -_.~
_URI_COMPONENT_SAFE = "!*'()"


@dataclass(frozen=True)
class NotificationMessage:
    title: str
    body: str


@dataclass
class NotificationResult:
    """Result of one channel's delivery attempt."""

    channel: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"channel": self.channel, "success": self.success, "error": self.error}


@runtime_checkable
class NotificationChannel(Protocol):
    """Interface every delivery channel implements."""

    @abstractmethod
    async def send(self, message: NotificationMessage) -> bool:
        """Deliver ``message``; True when the remote side confirmed it."""
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


def bark_url(server_url: str, key: str, title: str, body: str) -> str:
    """``{server}/{key}/{title}/{body}`` with each segment percent-encoded."""
    base = str(server_url).rstrip("/")
    segments = (quote(str(part), safe=_URI_COMPONENT_SAFE) for part in (key, title, body))
    return base + "/" + "/".join(segments)


class BarkChannel:
    """Bark push notifications via HTTP GET."""

    def __init__(
        self,
        settings: BarkSettings,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._server_url = settings.server_url
        self._key = settings.key
        self._timeout = timeout
        self._transport = transport

    async def send(self, message: NotificationMessage) -> bool:
        url = bark_url(self._server_url, self._key, message.title, message.body)
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(url)
        return response.is_success

    def get_name(self) -> str:
        return "bark"


class EmailChannel:
    """SMTP email to the configured sender address.

    Port 465 (or ``secure``) uses implicit TLS, any other port upgrades with
    STARTTLS when the server offers it.
    """

    def __init__(self, settings: SmtpSettings, timeout: float = 15.0) -> None:
        self._host = settings.host
        self._port = settings.port or 587
        self._implicit_tls = settings.secure or self._port == 465
        self._username = settings.username
        self._password = settings.password
        self._sender = settings.sender
        self._timeout = timeout

    async def send(self, message: NotificationMessage) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._send_sync, message)

    def _send_sync(self, message: NotificationMessage) -> bool:
        context = ssl.create_default_context()
        mime = self._format_email(message)
        if self._implicit_tls:
            with smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout, context=context) as server:
                self._deliver(server, mime)
        else:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls(context=context)
                    server.ehlo()
                self._deliver(server, mime)
        return True

    def _deliver(self, server: smtplib.SMTP, mime: MIMEText) -> None:
        if self._username:
            server.login(self._username, self._password)
        server.sendmail(self._sender, [self._sender], mime.as_string())

    def _format_email(self, message: NotificationMessage) -> MIMEText:
        mime = MIMEText(message.body, "plain", "utf-8")
        mime["From"] = self._sender
        mime["To"] = self._sender
        mime["Subject"] = message.title
        return mime

    def get_name(self) -> str:
        return "email"


ChannelFactory = Callable[[Settings], list[NotificationChannel]]


class NotificationDispatcher:
    """Fans a message out to a tenant's enabled channels."""

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        logger: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        channel_factory: Optional[ChannelFactory] = None,
    ) -> None:
        """
        Args:
            config: Dispatch and per-channel timeouts
            logger: Optional audit logger
            transport: Optional httpx transport for the Bark channel
            channel_factory: Replaces the settings-based channel construction
        """
        self._config = config or NotificationConfig()
        self._logger = logger
        self._transport = transport
        self._channel_factory = channel_factory or self.channels_for

    def channels_for(self, settings: Settings) -> list[NotificationChannel]:
        """Channels enabled and fully configured in ``settings``."""
        channels: list[NotificationChannel] = []
        bark = settings.notifications.bark
        if bark.enabled and bark.server_url and bark.key:
            channels.append(BarkChannel(bark, self._config.bark_timeout_seconds, self._transport))
        smtp = settings.notifications.smtp
        if smtp.enabled and smtp.host and smtp.sender:
            channels.append(EmailChannel(smtp, self._config.smtp_timeout_seconds))
        return channels

    async def dispatch(self, settings: Settings, message: NotificationMessage) -> list[NotificationResult]:
        """
        Deliver to every channel concurrently within the dispatch timeout.

        Channels still running at the deadline are cancelled and reported as
        failed.
        """
        channels = self._channel_factory(settings)
        if not channels:
            return []

        tasks = {asyncio.ensure_future(channel.send(message)): channel for channel in channels}
        done, pending = await asyncio.wait(tasks, timeout=self._config.dispatch_timeout_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for task, channel in tasks.items():
            name = channel.get_name()
            if task in pending:
                result = NotificationResult(name, False, "timeout")
            elif task.cancelled():
                result = NotificationResult(name, False, "cancelled")
            elif task.exception() is not None:
                error = task.exception()
                result = NotificationResult(name, False, f"{type(error).__name__}: {error}")
            elif task.result():
                result = NotificationResult(name, True)
            else:
                result = NotificationResult(name, False, "channel reported failure")
            self._log_result(result, message)
            results.append(result)
        return results

    async def send(self, settings: Settings, title: str, body: str) -> bool:
        """True if at least one channel confirmed delivery."""
        results = await self.dispatch(settings, NotificationMessage(title, body))
        return any(r.success for r in results)

    def _log_result(self, result: NotificationResult, message: NotificationMessage) -> None:
        if self._logger is None:
            return
        if result.success:
            self._logger.log(LogLevel.INFO, "NotificationDispatcher",
                             f"Notification sent via {result.channel}", {"title": message.title})
        else:
            self._logger.log(LogLevel.ERROR, "NotificationDispatcher",
                             f"Notification via {result.channel} failed",
                             {"title": message.title, "error": result.error})
