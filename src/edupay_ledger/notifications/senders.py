'''
Outbound guardian notifications.

LogNotificationSender only writes to the log and is the default outside
production. HttpSmsSender posts to an SMS gateway configured in settings.
'''
from typing import Optional

import httpx # Using httpx for async requests

from ..common.config import settings
from ..common.logger import log


class LogNotificationSender:
    """Development sender: every message is logged and reported as delivered."""

    async def send(self, recipient: str, message: str) -> bool:
        log.info(f"[notification] to={recipient}: {message}")
        return True


class HttpSmsSender:
    """
    Sends SMS through an HTTP gateway. A delivery failure is reported as False,
    never raised, so one bad number cannot abort a reminder batch.
    """
    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.api_url = settings.SMS_API_URL
        self.api_key = settings.SMS_API_KEY
        self.username = settings.SMS_USERNAME
        self.sender_id = settings.SMS_SENDER_ID
        self._client = client

    def _payload(self, recipient: str, message: str) -> dict:
        return {
            "username": self.username,
            "to": recipient,
            "message": message,
            "from": self.sender_id,
        }

    async def _post(self, client: httpx.AsyncClient, recipient: str, message: str) -> httpx.Response:
        return await client.post(
            self.api_url,
            data=self._payload(recipient, message),
            headers={"apiKey": self.api_key, "Accept": "application/json"},
            timeout=settings.SMS_TIMEOUT_SECONDS,
        )

    async def send(self, recipient: str, message: str) -> bool:
        if not recipient:
            log.warning("SMS skipped: no recipient phone number.")
            return False

        log.info(f"Sending SMS to {recipient}")
        try:
            if self._client is not None:
                response = await self._post(self._client, recipient, message)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, recipient, message)
            response.raise_for_status() # Raise an exception for HTTP errors (4xx or 5xx)

        except httpx.RequestError as e:
            log.error(f"HTTP request to SMS gateway failed for {recipient}: {e}", exc_info=True)
            return False
        except httpx.HTTPStatusError as e:
            log.error(f"SMS gateway returned an error for {recipient}: {e.response.status_code} - {e.response.text}")
            return False

        log.info(f"SMS accepted by gateway for {recipient}")
        return True


def get_notification_sender():
    """
    FastAPI dependency selecting the sender. Without a configured gateway
    (or in TEST_MODE) messages are only logged.
    """
    if settings.TEST_MODE or not settings.SMS_API_URL:
        return LogNotificationSender()
    return HttpSmsSender()
