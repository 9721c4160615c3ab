"""
Transactional email delivery over the Resend HTTP API.
"""

from typing import Optional

import httpx
import structlog

from scheduler.models import EmailMessage

logger = structlog.get_logger(__name__)


class DeliveryError(Exception):
    """A message could not be handed to the mail provider."""


class ResendMailer:
    """Sends email through the Resend REST endpoint."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.logger = logger.bind(component="resend_mailer")

    async def send(self, message: EmailMessage) -> str:
        """
        Send one message.

        Returns:
            Provider message id

        Raises:
            DeliveryError: transport failure or non-2xx response
        """
        payload = {
            "from": message.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            response = await self.client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Failed to reach mail provider: {e}") from e

        if response.status_code >= 300:
            raise DeliveryError(
                f"Mail provider rejected message to {message.to}: "
                f"{response.status_code} {response.text[:200]}"
            )

        try:
            message_id = response.json().get("id", "")
        except ValueError:
            # Accepted, but without a parsable receipt
            self.logger.warning("Mail provider returned no message id", to=message.to)
            message_id = ""

        self.logger.debug("Email sent", to=message.to, subject=message.subject, message_id=message_id)
        return message_id

    async def close(self) -> None:
        await self.client.aclose()
