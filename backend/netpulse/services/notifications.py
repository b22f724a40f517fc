"""Outbound email and SMS notifications for subscribers."""

from __future__ import annotations

import abc
import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from .. import models
from ..settings import read_bool_env
from .errors import ConfigurationError, NetpulseError

LOGGER = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_SMS = "sms"


class NotificationError(NetpulseError):
    """Raised when the external provider cannot be reached."""


@dataclass
class NotificationResult:
    """Outcome returned by a notification provider."""

    success: bool
    status_code: Optional[int] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationClient(abc.ABC):
    """Interface implemented by outbound notification providers."""

    channel: str

    @abc.abstractmethod
    def send_message(
        self,
        *,
        destination: str,
        subject: str,
        plain_text: str,
    ) -> NotificationResult:
        """Send a message to the destination and return the delivery result."""


class ConsoleNotificationClient(NotificationClient):
    """Fallback client that logs messages instead of sending them."""

    channel = "console"

    def __init__(self) -> None:
        self.records: list[dict[str, str]] = []

    def send_message(
        self,
        *,
        destination: str,
        subject: str,
        plain_text: str,
    ) -> NotificationResult:
        self.records.append(
            {"destination": destination, "subject": subject, "plain_text": plain_text}
        )
        LOGGER.info("[console] notification for %s: %s", destination, plain_text.replace("\n", " "))
        return NotificationResult(success=True, status_code=200, provider_message_id="console")


class SendGridEmailClient(NotificationClient):
    """Send email through the SendGrid REST API."""

    channel = CHANNEL_EMAIL
    endpoint = "https://api.sendgrid.com/v3/mail/send"

    def __init__(
        self,
        *,
        api_key: str | None,
        sender_email: str | None,
        sender_name: str | None = None,
        sandbox_mode: bool = False,
        timeout: float = 10.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError("SENDGRID_API_KEY is required to send email.")
        if not sender_email:
            raise ConfigurationError("SENDGRID_SENDER_EMAIL is required to send email.")
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name or "NetPulse"
        self.sandbox_mode = sandbox_mode
        self.timeout = timeout

    def send_message(
        self,
        *,
        destination: str,
        subject: str,
        plain_text: str,
    ) -> NotificationResult:
        payload: dict[str, object] = {
            "personalizations": [{"to": [{"email": destination}]}],
            "from": {"email": self.sender_email, "name": self.sender_name},
            "subject": subject,
            "content": [{"type": "text/plain", "value": plain_text}],
        }
        if self.sandbox_mode:
            payload["mail_settings"] = {"sandbox_mode": {"enable": True}}

        try:
            response = httpx.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:  # pragma: no cover - network failure
            raise NotificationError(f"SendGrid unreachable: {exc}") from exc

        if response.status_code >= 400:
            return NotificationResult(
                success=False, status_code=response.status_code, error=response.text
            )
        return NotificationResult(
            success=True,
            status_code=response.status_code,
            provider_message_id=response.headers.get("x-message-id"),
        )


class TwilioMessageClient(NotificationClient):
    """Send SMS through Twilio's REST API."""

    channel = CHANNEL_SMS

    def __init__(
        self,
        *,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        timeout: float = 10.0,
    ) -> None:
        if not account_sid:
            raise ConfigurationError("TWILIO_ACCOUNT_SID is required to send SMS.")
        if not auth_token:
            raise ConfigurationError("TWILIO_AUTH_TOKEN is required to send SMS.")
        if not from_number:
            raise ConfigurationError("TWILIO_FROM_NUMBER is required to send SMS.")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        return f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"

    def send_message(
        self,
        *,
        destination: str,
        subject: str,
        plain_text: str,
    ) -> NotificationResult:
        del subject  # SMS bodies carry no subject line.
        try:
            response = httpx.post(
                self.endpoint,
                data={"To": destination, "From": self.from_number, "Body": plain_text},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:  # pragma: no cover - network failure
            raise NotificationError(f"Twilio unreachable: {exc}") from exc

        if response.status_code >= 400:
            try:
                message = response.json().get("message")
            except json.JSONDecodeError:
                message = response.text
            return NotificationResult(success=False, status_code=response.status_code, error=message)

        return NotificationResult(
            success=True,
            status_code=response.status_code,
            provider_message_id=response.json().get("sid"),
        )


def build_notification_clients_from_env() -> dict[str, NotificationClient]:
    """Return one client per channel, using the console when a provider is unconfigured."""

    def _console_fallback(reason: str) -> NotificationClient:
        LOGGER.warning("%s; notifications will be logged to the console.", reason)
        return ConsoleNotificationClient()

    clients: dict[str, NotificationClient] = {}
    try:
        clients[CHANNEL_EMAIL] = SendGridEmailClient(
            api_key=os.getenv("SENDGRID_API_KEY"),
            sender_email=os.getenv("SENDGRID_SENDER_EMAIL"),
            sender_name=os.getenv("SENDGRID_SENDER_NAME"),
            sandbox_mode=read_bool_env("SENDGRID_SANDBOX_MODE"),
        )
    except ConfigurationError as exc:
        clients[CHANNEL_EMAIL] = _console_fallback(str(exc))
    try:
        clients[CHANNEL_SMS] = TwilioMessageClient(
            account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            from_number=os.getenv("TWILIO_FROM_NUMBER"),
        )
    except ConfigurationError as exc:
        clients[CHANNEL_SMS] = _console_fallback(str(exc))
    return clients


class NotificationService:
    """Fire-and-forget delivery with a persisted log of every attempt.

    Log rows are added to the caller's session and flushed; the caller's
    commit makes them durable.
    """

    def __init__(self, db: Session, clients: dict[str, NotificationClient] | None = None) -> None:
        self.db = db
        self.clients = clients if clients is not None else build_notification_clients_from_env()

    def send(
        self,
        channel: str,
        recipient: Optional[str],
        subject: str,
        content: str,
        *,
        notification_type: models.NotificationType,
        client_id: Optional[str] = None,
    ) -> bool:
        client = self.clients.get(channel)
        if client is None or not recipient:
            LOGGER.info(
                "Skipping %s notification for client %s: no %s",
                notification_type.value,
                client_id,
                "recipient" if client is not None else f"{channel} client",
            )
            return False

        try:
            result = client.send_message(destination=recipient, subject=subject, plain_text=content)
        except NotificationError as exc:
            LOGGER.warning("Notification to %s failed: %s", recipient, exc)
            result = NotificationResult(success=False, error=str(exc))
        except Exception as exc:  # pragma: no cover
            LOGGER.exception("Unexpected error notifying %s", recipient)
            result = NotificationResult(success=False, error=str(exc))

        if not result.success:
            LOGGER.warning(
                "Notification %s to %s was rejected: %s",
                notification_type.value,
                recipient,
                result.error,
            )

        self.db.add(
            models.NotificationLog(
                client_id=client_id,
                notification_type=notification_type,
                delivery_status=(
                    models.DeliveryStatus.SENT if result.success else models.DeliveryStatus.FAILED
                ),
                channel=client.channel,
                destination=recipient,
                provider_message_id=result.provider_message_id,
                response_code=result.status_code,
                error_message=result.error,
                payload=json.dumps({"subject": subject, "content": content}, ensure_ascii=False),
            )
        )
        self.db.flush()
        return result.success

    def notify_client(
        self,
        client: models.ClientAccount,
        notification_type: models.NotificationType,
        subject: str,
        content: str,
    ) -> None:
        """Send ``content`` by SMS and email to whichever contacts the client has."""

        client_id = str(client.id)
        if client.phone:
            self.send(
                CHANNEL_SMS,
                client.phone,
                subject,
                content,
                notification_type=notification_type,
                client_id=client_id,
            )
        if client.email:
            self.send(
                CHANNEL_EMAIL,
                client.email,
                subject,
                content,
                notification_type=notification_type,
                client_id=client_id,
            )
