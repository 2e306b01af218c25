"""Pluggable email transports.

- ``LoggingEmailTransport`` writes each message to the application log
  (development default, ``EMAIL_TRANSPORT=log``).
- ``HttpEmailTransport`` posts a JSON payload to a mail relay with httpx
  (``EMAIL_TRANSPORT=http``).

Transports raise ``EmailDeliveryError`` on failure; the email service turns
that into a ``failed`` EmailLog row.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx

from src.config import Settings, settings
from src.services.errors import ConfigurationError, EmailDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    """Rendered message ready for delivery."""

    sender: str
    recipients: tuple[str, ...]
    subject: str
    body: str
    headers: dict[str, str] = field(default_factory=dict)


class EmailTransport(ABC):
    """Delivery backend for rendered messages."""

    name: str = "abstract"

    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        """Deliver ``message``.

        Raises:
            EmailDeliveryError: If delivery failed.
        """


class LoggingEmailTransport(EmailTransport):
    """Write messages to the log instead of delivering them."""

    name = "log"

    async def send(self, message: EmailMessage) -> None:
        logger.info(
            "Email to %s: %s\n%s",
            ", ".join(message.recipients),
            message.subject,
            message.body,
        )


class HttpEmailTransport(EmailTransport):
    """Post messages to an HTTP mail relay.

    Args:
        relay_url: Relay endpoint accepting a JSON payload.
        timeout: Request timeout in seconds.
        client: Optional pre-configured client (used by tests).
    """

    name = "http"

    def __init__(self, relay_url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._relay_url = relay_url
        self._timeout = timeout
        self._client = client

    async def send(self, message: EmailMessage) -> None:
        payload = {
            "from": message.sender,
            "to": list(message.recipients),
            "subject": message.subject,
            "text": message.body,
            "headers": message.headers,
        }
        try:
            if self._client is not None:
                response = await self._client.post(self._relay_url, json=payload, timeout=self._timeout)
                response.raise_for_status()
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self._relay_url, json=payload, timeout=self._timeout)
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EmailDeliveryError(f"Mail relay rejected message: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Mail relay unreachable: {e}") from e


def build_transport(config: Settings = settings) -> EmailTransport:
    """Create the transport selected by EMAIL_TRANSPORT.

    Raises:
        ConfigurationError: If the HTTP transport is selected without a relay URL.
    """
    if config.EMAIL_TRANSPORT == "http":
        if not config.EMAIL_RELAY_URL:
            raise ConfigurationError("EMAIL_RELAY_URL must be set when EMAIL_TRANSPORT=http")
        return HttpEmailTransport(config.EMAIL_RELAY_URL, timeout=config.EMAIL_TIMEOUT_SECONDS)
    return LoggingEmailTransport()
