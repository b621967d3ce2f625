"""Africa's Talking implementation of SmsGateway."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from aurora.config import Settings
from aurora.models import SendResult
from aurora.sms.base import SmsGateway

_LOGGER = logging.getLogger(__name__)


class AfricasTalkingGateway(SmsGateway):
    """Sends SMS through the Africa's Talking messaging endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def send(self, destination: str, text: str, sender: str) -> SendResult:
        form = {
            "username": self._settings.africastalking_username,
            "to": destination,
            "message": text,
            "from": sender,
        }
        headers = {
            "apiKey": self._settings.africastalking_api_key,
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        try:
            async with httpx.AsyncClient(
                base_url=self._settings.africastalking_base_url, timeout=timeout
            ) as client:
                response = await client.post("/messaging", headers=headers, data=form)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            _LOGGER.warning("Africa's Talking returned HTTP %s", exc.response.status_code)
            return SendResult(success=False, error_reason=f"HTTP {exc.response.status_code}")
        except httpx.RequestError as exc:
            _LOGGER.warning("Africa's Talking request failed: %s", exc)
            return SendResult(success=False, error_reason=str(exc) or type(exc).__name__)
        except ValueError:
            _LOGGER.warning("Africa's Talking returned a non-JSON body")
            return SendResult(success=False, error_reason="Invalid response format")

        return _to_send_result(data)


def _to_send_result(data: Any) -> SendResult:
    recipients = None
    if isinstance(data, dict):
        message_data = data.get("SMSMessageData")
        if isinstance(message_data, dict):
            recipients = message_data.get("Recipients")
    if not isinstance(recipients, list) or not recipients or not isinstance(recipients[0], dict):
        return SendResult(success=False, error_reason="Invalid response format")

    recipient = recipients[0]
    status = str(recipient.get("status") or "")
    if status != "Success":
        return SendResult(success=False, error_reason=status or "Unknown status")
    message_id = recipient.get("messageId")
    return SendResult(success=True, provider_message_id=str(message_id) if message_id else None)
