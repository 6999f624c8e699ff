"""Alert lifecycle management - Channel Dispatching.

Two channel kinds exist, mail and chat. Each wraps a transport that does
the network I/O; transports are injected so tests can replace them.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.text import MIMEText
from typing import Any, Dict, Iterable, List, Optional

import httpx

from opsmon.logging_config import PerformanceTimer

from .config import ChannelType, ChatConfig, DeliveryOutcome, MailConfig
from .formatter import NotificationPayload
from .models import utcnow
from .routing import Destination

logger = logging.getLogger(__name__)

_MIME_SUBTYPES = {
    "text/plain": "plain",
    "text/html": "html",
    "application/json": "plain",
}


@dataclass
class DeliveryResult:
    """Result of a channel delivery attempt."""

    channel: ChannelType
    target: str
    outcome: DeliveryOutcome
    error: Optional[str] = None
    attempted_at: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "target": self.target,
            "outcome": self.outcome.value,
            "error": self.error,
        }


@dataclass
class DeliveryReport:
    """Per-destination results for one notification."""

    alert_id: str
    results: List[DeliveryResult] = field(default_factory=list)
    recorded: bool = True

    def _count(self, outcome: DeliveryOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def delivered(self) -> int:
        return self._count(DeliveryOutcome.DELIVERED)

    @property
    def suppressed(self) -> int:
        return self._count(DeliveryOutcome.SUPPRESSED)

    @property
    def failed(self) -> int:
        return self._count(DeliveryOutcome.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "delivered": self.delivered,
            "suppressed": self.suppressed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


# ── Transports ────────────────────────────────────────────────────────


class MailTransport(ABC):
    """Sends one message to one recipient."""

    @abstractmethod
    def send(self, to: str, subject: str, body: str, content_type: str) -> None:
        """Send or raise."""


class ChatTransport(ABC):
    """Posts one message to a webhook."""

    @abstractmethod
    def post(self, url: str, payload: Dict[str, Any]) -> None:
        """Post or raise."""


class SmtpMailTransport(MailTransport):
    """smtplib transport bounded by a socket timeout."""

    def __init__(self, config: MailConfig, timeout: float = 10.0) -> None:
        self._config = config
        self._timeout = timeout

    def send(self, to: str, subject: str, body: str, content_type: str) -> None:
        msg = MIMEText(body, _MIME_SUBTYPES.get(content_type, "plain"), "utf-8")
        msg["Subject"] = subject
        msg["From"] = self._config.sender
        msg["To"] = to

        with PerformanceTimer("smtp_send", threshold_ms=self._timeout * 500):
            with smtplib.SMTP(self._config.host, self._config.port, timeout=self._timeout) as server:
                if self._config.starttls:
                    server.starttls()
                if self._config.user:
                    server.login(self._config.user, self._config.password)
                server.sendmail(self._config.sender, [to], msg.as_string())


class WebhookChatTransport(ChatTransport):
    """httpx transport; any non-2xx response raises."""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None) -> None:
        self._timeout = timeout
        self._client = client

    def post(self, url: str, payload: Dict[str, Any]) -> None:
        with PerformanceTimer("chat_webhook_post", threshold_ms=self._timeout * 500):
            if self._client is not None:
                response = self._client.post(url, json=payload, timeout=self._timeout)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(url, json=payload)
        response.raise_for_status()


# ── Channels ──────────────────────────────────────────────────────────


class NotificationChannel(ABC):
    """A configured delivery channel."""

    channel_type: ChannelType

    @abstractmethod
    def send(self, payload: NotificationPayload, destination: Destination) -> DeliveryResult:
        """Deliver ``payload`` to ``destination``."""

    def _result(self, target: str, outcome: DeliveryOutcome, error: Optional[str] = None):
        return DeliveryResult(channel=self.channel_type, target=target, outcome=outcome, error=error)


class MailChannel(NotificationChannel):
    channel_type = ChannelType.MAIL

    def __init__(self, config: MailConfig, transport: MailTransport) -> None:
        self._config = config
        self._transport = transport

    def send(self, payload: NotificationPayload, destination: Destination) -> DeliveryResult:
        target = destination.target
        if not self._config.enabled:
            return self._result(target, DeliveryOutcome.SUPPRESSED, "mail delivery disabled")
        if not self._config.is_configured():
            return self._result(target, DeliveryOutcome.SUPPRESSED, "mail transport not configured")
        try:
            self._transport.send(target, payload.subject, payload.body, payload.content_type)
        except (smtplib.SMTPException, OSError) as exc:
            return self._result(target, DeliveryOutcome.FAILED, f"{type(exc).__name__}: {exc}")
        return self._result(target, DeliveryOutcome.DELIVERED)


class ChatChannel(NotificationChannel):
    channel_type = ChannelType.CHAT

    def __init__(self, config: ChatConfig, transport: ChatTransport) -> None:
        self._config = config
        self._transport = transport

    def send(self, payload: NotificationPayload, destination: Destination) -> DeliveryResult:
        url = destination.target if destination.is_webhook_url else self._config.webhook_url
        target = destination.target or "webhook"
        if not self._config.enabled:
            return self._result(target, DeliveryOutcome.SUPPRESSED, "chat delivery disabled")
        if not url:
            return self._result(target, DeliveryOutcome.SUPPRESSED, "chat webhook not configured")

        message = dict(payload.chat)
        if destination.target.startswith("#"):
            message["channel"] = destination.target
        try:
            self._transport.post(url, message)
        except httpx.HTTPError as exc:
            return self._result(target, DeliveryOutcome.FAILED, f"{type(exc).__name__}: {exc}")
        return self._result(target, DeliveryOutcome.DELIVERED)


class ChannelDispatcher:
    """Dispatches notifications to the configured channels.

    A failure on one destination never prevents delivery to the others.
    """

    def __init__(self, channels: Iterable[NotificationChannel] = ()) -> None:
        self._channels: Dict[ChannelType, NotificationChannel] = {
            channel.channel_type: channel for channel in channels
        }

    @property
    def channel_types(self) -> List[ChannelType]:
        return list(self._channels)

    def dispatch(self, payload: NotificationPayload, destination: Destination) -> DeliveryResult:
        """Dispatch a notification to a single destination.

        Args:
            payload: The rendered notification.
            destination: Where to deliver it.

        Returns:
            DeliveryResult with the outcome.
        """
        channel = self._channels.get(destination.channel)
        if channel is None:
            result = DeliveryResult(
                channel=destination.channel,
                target=destination.target,
                outcome=DeliveryOutcome.SUPPRESSED,
                error="channel not configured",
            )
        else:
            try:
                result = channel.send(payload, destination)
            except Exception as exc:
                logger.exception(
                    "Unexpected error delivering alert %s via %s",
                    payload.alert_id, destination.channel.value,
                )
                result = DeliveryResult(
                    channel=destination.channel,
                    target=destination.target,
                    outcome=DeliveryOutcome.FAILED,
                    error=f"{type(exc).__name__}: {exc}",
                )

        log = logger.warning if result.outcome == DeliveryOutcome.FAILED else logger.info
        log(
            "Dispatched alert %s to %s %s (%s)%s",
            payload.alert_id,
            result.channel.value,
            result.target,
            result.outcome.value,
            f": {result.error}" if result.error else "",
            extra={
                "alert_id": payload.alert_id,
                "channel": result.channel.value,
                "outcome": result.outcome.value,
            },
        )
        return result

    def dispatch_all(
        self,
        alert_id: str,
        payload: NotificationPayload,
        destinations: Iterable[Destination],
    ) -> DeliveryReport:
        """Dispatch to every destination and aggregate the outcomes."""
        report = DeliveryReport(alert_id=alert_id)
        for destination in destinations:
            report.results.append(self.dispatch(payload, destination))
        return report


def build_dispatcher(
    mail: MailConfig,
    chat: ChatConfig,
    timeout: float,
    mail_transport: Optional[MailTransport] = None,
    chat_transport: Optional[ChatTransport] = None,
) -> ChannelDispatcher:
    """Dispatcher with both channels, using the real transports unless given others."""
    return ChannelDispatcher([
        MailChannel(mail, mail_transport or SmtpMailTransport(mail, timeout=timeout)),
        ChatChannel(chat, chat_transport or WebhookChatTransport(timeout=timeout)),
    ])
