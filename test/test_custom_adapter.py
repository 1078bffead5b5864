"""Tests for the bring-your-own VoIP gateway adapter."""

import hashlib
import hmac
import json

import httpx
import pytest

from callcenter.telephony.adapters.custom import CustomProviderAdapter
from callcenter.telephony.interface import (
    CallStatus,
    OutboundCallRequest,
    ProviderConnectionError,
    ProviderRejection,
)

CREDS = {
    "provider_url": "https://voip.example.com/",
    "api_key": "custom-key",
    "webhook_secret": "hook-secret",
}


def _adapter(handler, requests: list[httpx.Request] | None = None) -> CustomProviderAdapter:
    def recording(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return CustomProviderAdapter(http_client=client)


class TestCustomProviderAdapter:
    @pytest.mark.asyncio
    async def test_initiate_call(self) -> None:
        requests: list[httpx.Request] = []
        adapter = _adapter(lambda r: httpx.Response(200, json={"callId": "gw-1"}), requests)
        request = OutboundCallRequest(
            to_number="+2",
            from_number="+1",
            callback_url="https://example.com/cb",
            metadata={"ticket": "42"},
        )

        result = await adapter.initiate_outbound_call(request, CREDS)

        assert result.external_call_id == "gw-1"
        assert result.status == CallStatus.INITIATED
        sent = requests[0]
        assert str(sent.url) == "https://voip.example.com/api/calls/initiate"
        assert sent.headers["Authorization"] == "Bearer custom-key"
        assert sent.headers["X-Webhook-Secret"] == "hook-secret"
        assert json.loads(sent.content) == {
            "to": "+2",
            "from": "+1",
            "customData": {"ticket": "42"},
            "webhookUrl": "https://example.com/cb",
            "statusCallbackUrl": "https://example.com/cb",
        }

    @pytest.mark.asyncio
    async def test_initiate_call_accepts_snake_case_id(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, json={"call_id": "gw-2", "status": "ringing"}))
        request = OutboundCallRequest(to_number="+2", from_number="+1", callback_url="https://x")

        result = await adapter.initiate_outbound_call(request, CREDS)

        assert result.external_call_id == "gw-2"
        assert result.status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_missing_provider_url(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, json={}))
        request = OutboundCallRequest(to_number="+2", from_number="+1", callback_url="https://x")

        with pytest.raises(ProviderRejection) as exc_info:
            await adapter.initiate_outbound_call(request, {"api_key": "k"})

        assert exc_info.value.error_code == "MISSING_CREDENTIALS"

    @pytest.mark.asyncio
    async def test_connection(self) -> None:
        requests: list[httpx.Request] = []
        adapter = _adapter(
            lambda r: httpx.Response(200, json={"status": "ok", "version": "1.4"}),
            requests,
        )

        result = await adapter.test_connection(CREDS)

        assert str(requests[0].url) == "https://voip.example.com/api/test"
        assert result.account_metadata == {
            "provider_url": "https://voip.example.com",
            "status": "ok",
            "version": "1.4",
        }

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter = _adapter(refuse)

        with pytest.raises(ProviderConnectionError) as exc_info:
            await adapter.test_connection(CREDS)

        assert exc_info.value.error_code == "HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_call_details(self) -> None:
        adapter = _adapter(
            lambda r: httpx.Response(
                200,
                json={"callId": "gw-1", "status": "completed", "duration": 12.7, "recordingUrl": "https://r"},
            )
        )

        detail = await adapter.get_call_details("gw-1", CREDS)

        assert detail.status == CallStatus.COMPLETED
        assert detail.duration_seconds == 12
        assert detail.recording_url == "https://r"


class TestCustomProviderSignature:
    def test_valid_signature(self) -> None:
        body = b'{"call_id": "gw-1"}'
        signature = hmac.new(b"hook-secret", body, hashlib.sha256).hexdigest()

        assert CustomProviderAdapter().validate_webhook_signature(body, signature, "", CREDS)

    def test_invalid_signature(self) -> None:
        assert not CustomProviderAdapter().validate_webhook_signature(
            b'{"call_id": "gw-1"}', "deadbeef", "", CREDS
        )

    def test_without_secret_accepts(self) -> None:
        creds = {"provider_url": "https://voip.example.com", "api_key": "k"}

        assert CustomProviderAdapter().validate_webhook_signature(b"{}", "", "", creds)
