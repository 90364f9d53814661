import logging
from typing import List, Optional

import httpx

from wins_column.exceptions import MailerError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
RESEND_API_URL = "https://api.resend.com"


class ResendMailer:
    """Sends HTML email through the Resend HTTP API."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = RESEND_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def send_email(self, to: List[str], from_: str, subject: str, html: str) -> Optional[str]:
        """Send one message and return the provider's message id."""
        if not self.api_key:
            raise MailerError("Resend API key is not configured")
        if not to:
            raise MailerError("At least one recipient is required")
        payload = {"from": from_, "to": to, "subject": subject, "html": html}
        try:
            response = await self.client.post(
                "/emails", json=payload, headers={"Authorization": f"Bearer {self.api_key}"}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MailerError(
                f"Resend rejected email with status {e.response.status_code}: {e.response.text}",
                {"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise MailerError(f"Failed to reach Resend: {e}") from e
        message_id = response.json().get("id")
        logger.info(f"Sent email '{subject}' to {len(to)} recipients (id={message_id})")
        return message_id
