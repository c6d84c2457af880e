"""WhatsApp Cloud API relay: outbound messages and inbound media lookup."""

import logging

import httpx

from nabi.config import get_settings
from nabi.errors import MediaResolutionError

settings = get_settings()
logger = logging.getLogger(__name__)

MEDIA_KINDS = ("image", "audio", "video")


class WhatsAppRelay:
    """Thin client over the Graph API messages and media endpoints.

    Send failures are logged and reported through the return value; they
    never raise, since there is no other channel to tell the user about them.
    """

    def __init__(self) -> None:
        self.base_url = settings.graph_api_url.rstrip("/")
        self.token = settings.whatsapp_token
        self.phone_number_id = settings.phone_number_id
        self.timeout = 20.0

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def send_text(self, recipient: str, text: str) -> bool:
        """Send a text message. Empty text is skipped."""
        if not text or not text.strip():
            logger.debug("Skipping empty text message to %s", recipient)
            return False

        return await self._post_message(
            recipient,
            {"type": "text", "text": {"body": text[:4096]}},
        )

    async def send_media(self, recipient: str, kind: str, url: str) -> bool:
        """Send an image, audio or video message by link."""
        if kind not in MEDIA_KINDS:
            raise ValueError(f"Unsupported media kind: {kind}")

        return await self._post_message(
            recipient,
            {"type": kind, kind: {"link": url}},
        )

    async def _post_message(self, recipient: str, body: dict) -> bool:
        if not self.token or not self.phone_number_id:
            logger.error("Missing WHATSAPP_TOKEN or PHONE_NUMBER_ID, message not sent")
            return False

        payload = {"messaging_product": "whatsapp", "to": recipient, **body}
        url = f"{self.base_url}/{self.phone_number_id}/messages"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=self._headers())
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"WhatsApp send failed ({body['type']} to {recipient}): "
                f"{e.response.status_code} {e.response.text}"
            )
            return False
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp send failed ({body['type']} to {recipient}): {e}")
            return False

        logger.info(f"Sent {body['type']} message to {recipient}")
        return True

    async def fetch_media_url(self, media_id: str) -> str:
        """Resolve a WhatsApp media id to a downloadable URL."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/{media_id}",
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MediaResolutionError(f"Could not resolve media {media_id}: {e}") from e

        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise MediaResolutionError(f"Media {media_id} has no url")
        return url

    async def download_media(self, url: str) -> bytes:
        """Download a resolved media URL. WhatsApp requires the bearer token here too."""
        try:
            async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
                response = await client.get(url, headers=self._headers())
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise MediaResolutionError(f"Could not download media: {e}") from e

        return response.content


# Singleton instance
whatsapp_relay = WhatsAppRelay()
