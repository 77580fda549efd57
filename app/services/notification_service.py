"""Multi-channel alert delivery."""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable, Iterable, Sequence
from email.message import EmailMessage
from typing import Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import Settings, settings
from app.models import Notification, User
from app.schemas.notification import NotificationPayload

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class ChannelNotConfiguredError(Exception):
    """Raised by a channel that lacks the settings it needs to deliver."""


class NotificationChannel(Protocol):
    name: str

    def send(self, recipient_ids: Sequence[int], payload: NotificationPayload) -> None: ...


class InAppChannel:
    """Writes one inbox row per recipient."""

    name = "in-app"

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def send(self, recipient_ids: Sequence[int], payload: NotificationPayload) -> None:
        with self.session_factory() as db:
            for user_id in recipient_ids:
                db.add(
                    Notification(
                        user_id=user_id,
                        title=payload.subject,
                        message=payload.message,
                        severity=payload.severity,
                        payload_metadata=payload.metadata,
                    )
                )
            db.commit()


class EmailChannel:
    """Sends a single message addressed to every recipient with an email."""

    name = "email"

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        host: str,
        port: int = 25,
        sender: str,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self.session_factory = session_factory
        self.host = host
        self.port = port
        self.sender = sender
        self.smtp_factory = smtp_factory

    def _addresses(self, recipient_ids: Sequence[int]) -> list[str]:
        with self.session_factory() as db:
            return list(db.scalars(select(User.email).where(User.id.in_(list(recipient_ids))).order_by(User.id)).all())

    def send(self, recipient_ids: Sequence[int], payload: NotificationPayload) -> None:
        if not self.host:
            raise ChannelNotConfiguredError("SMTP_HOST is not set")
        addresses = self._addresses(recipient_ids)
        if not addresses:
            logger.warning("[NOTIFY] No email addresses for recipients %s", list(recipient_ids))
            return

        message = EmailMessage()
        message["Subject"] = f"[{payload.severity.upper()}] {payload.subject}"
        message["From"] = self.sender
        message["To"] = ", ".join(addresses)
        message.set_content(payload.message)
        with self.smtp_factory(self.host, self.port) as smtp:
            smtp.send_message(message)


class SlackChannel:
    """Posts the alert to a Slack incoming webhook."""

    name = "slack"

    def __init__(self, webhook_url: str, *, timeout: float = 5.0, client: httpx.Client | None = None) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.client = client

    def send(self, recipient_ids: Sequence[int], payload: NotificationPayload) -> None:
        if not self.webhook_url:
            raise ChannelNotConfiguredError("SLACK_WEBHOOK_URL is not set")
        body = {"text": f"*{payload.subject}* ({payload.severity})\n{payload.message}"}
        if self.client is not None:
            response = self.client.post(self.webhook_url, json=body, timeout=self.timeout)
        else:
            response = httpx.post(self.webhook_url, json=body, timeout=self.timeout)
        response.raise_for_status()


class NotificationDispatcher:
    """Fans an alert out to channels; a failing channel never blocks the rest."""

    def __init__(self, channels: Iterable[NotificationChannel]) -> None:
        self._channels: dict[str, NotificationChannel] = {channel.name: channel for channel in channels}

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels)

    def notify(
        self,
        channels: Sequence[str],
        recipient_ids: Sequence[int],
        payload: NotificationPayload,
    ) -> dict[str, str | None]:
        """Deliver ``payload`` and return per-channel errors (``None`` on success)."""
        outcomes: dict[str, str | None] = {}
        if not recipient_ids:
            logger.warning("[NOTIFY] No recipients for '%s'; alert not delivered.", payload.subject)
            return outcomes

        for channel_name in channels:
            channel = self._channels.get(channel_name)
            if channel is None:
                logger.warning("[NOTIFY] Unknown channel '%s' skipped.", channel_name)
                outcomes[channel_name] = "unknown channel"
                continue
            try:
                channel.send(recipient_ids, payload)
            except ChannelNotConfiguredError as exc:
                logger.warning("[NOTIFY] Channel '%s' not configured: %s", channel_name, exc)
                outcomes[channel_name] = str(exc)
            except Exception as exc:
                logger.exception("[NOTIFY] Channel '%s' failed to deliver '%s'.", channel_name, payload.subject)
                outcomes[channel_name] = str(exc) or exc.__class__.__name__
            else:
                outcomes[channel_name] = None
        return outcomes


def build_dispatcher(session_factory: SessionFactory, config: Settings = settings) -> NotificationDispatcher:
    """Build the dispatcher with the channels enabled in ``NOTIFICATION_CHANNELS``."""
    available: dict[str, Callable[[], NotificationChannel]] = {
        EmailChannel.name: lambda: EmailChannel(
            session_factory, host=config.smtp_host, port=config.smtp_port, sender=config.smtp_sender
        ),
        SlackChannel.name: lambda: SlackChannel(config.slack_webhook_url, timeout=config.slack_timeout_seconds),
        InAppChannel.name: lambda: InAppChannel(session_factory),
    }
    channels: list[NotificationChannel] = []
    for channel_name in config.notification_channels:
        factory = available.get(channel_name)
        if factory is None:
            logger.warning("[NOTIFY] Ignoring unknown channel '%s' in NOTIFICATION_CHANNELS.", channel_name)
            continue
        channels.append(factory())
    return NotificationDispatcher(channels)
