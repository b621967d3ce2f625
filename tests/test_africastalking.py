"""Tests for AfricasTalkingGateway."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from aurora.config import Settings
from aurora.sms.africastalking import AfricasTalkingGateway


def _settings() -> Settings:
    return Settings(
        AFRICASTALKING_USERNAME="sandbox",
        AFRICASTALKING_API_KEY="key-123",
        AFRICASTALKING_BASE_URL="https://api.sandbox.africastalking.com/version1",
    )


def _mock_response(data: object, status_code: int = 201) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    return resp


def _mock_client(response: MagicMock | None = None, side_effect: Exception | None = None) -> AsyncMock:
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.post = AsyncMock(return_value=response, side_effect=side_effect)
    return client


@pytest.mark.asyncio
async def test_send_success_returns_message_id():
    payload = {
        "SMSMessageData": {
            "Message": "Sent to 1/1 Total Cost: KES 0.8000",
            "Recipients": [{"status": "Success", "statusCode": 101, "messageId": "ATXid_abc", "number": "95551"}],
        }
    }
    client = _mock_client(_mock_response(payload))

    with patch("aurora.sms.africastalking.httpx.AsyncClient", return_value=client):
        result = await AfricasTalkingGateway(_settings()).send("95551", "BAL 12345", "+254700000000")

    assert result.success
    assert result.provider_message_id == "ATXid_abc"
    kwargs = client.post.call_args.kwargs
    assert client.post.call_args.args[0] == "/messaging"
    assert kwargs["headers"]["apiKey"] == "key-123"
    assert kwargs["data"] == {
        "username": "sandbox",
        "to": "95551",
        "message": "BAL 12345",
        "from": "+254700000000",
    }


@pytest.mark.asyncio
async def test_send_reports_recipient_failure():
    payload = {"SMSMessageData": {"Recipients": [{"status": "InvalidPhoneNumber", "statusCode": 403}]}}
    client = _mock_client(_mock_response(payload))

    with patch("aurora.sms.africastalking.httpx.AsyncClient", return_value=client):
        result = await AfricasTalkingGateway(_settings()).send("95551", "BAL 12345", "+254700000000")

    assert not result.success
    assert result.error_reason == "InvalidPhoneNumber"


@pytest.mark.asyncio
async def test_send_reports_unexpected_payload():
    client = _mock_client(_mock_response({"unexpected": True}))

    with patch("aurora.sms.africastalking.httpx.AsyncClient", return_value=client):
        result = await AfricasTalkingGateway(_settings()).send("95551", "BAL 12345", "+254700000000")

    assert not result.success
    assert result.error_reason == "Invalid response format"


@pytest.mark.asyncio
async def test_send_reports_http_error():
    request = httpx.Request("POST", "https://api.sandbox.africastalking.com/version1/messaging")
    response = _mock_response({}, status_code=401)
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        "unauthorized", request=request, response=httpx.Response(401, request=request)
    )
    client = _mock_client(response)

    with patch("aurora.sms.africastalking.httpx.AsyncClient", return_value=client):
        result = await AfricasTalkingGateway(_settings()).send("95551", "BAL 12345", "+254700000000")

    assert not result.success
    assert result.error_reason == "HTTP 401"


@pytest.mark.asyncio
async def test_send_reports_connection_error():
    client = _mock_client(side_effect=httpx.ConnectError("connection refused"))

    with patch("aurora.sms.africastalking.httpx.AsyncClient", return_value=client):
        result = await AfricasTalkingGateway(_settings()).send("95551", "BAL 12345", "+254700000000")

    assert not result.success
    assert "connection refused" in (result.error_reason or "")
