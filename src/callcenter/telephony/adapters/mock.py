"""
Mock telephony provider adapter for testing and sandbox deployments.

Impersonates any vendor: the provider name decides which payload variant it
accepts. Failures, delays and call statuses are configurable per instance and
every interaction is recorded for assertions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import anyio

from callcenter.shared.logging import get_logger
from callcenter.telephony.interface import (
    PAYLOAD_TYPES,
    CallDetail,
    CallDirection,
    CallNotFoundError,
    CallStatus,
    ConnectionTestResult,
    Credentials,
    CustomPayload,
    NormalizedInboundCall,
    OutboundCallRequest,
    OutboundCallResult,
    ProviderConnectionError,
    ProviderName,
    ProviderRejection,
    TelephonyProvider,
    TelephonyProviderError,
    VendorPayload,
    VoiceBasePayload,
)

logger = get_logger(__name__)


def _payload_call_id(payload: VendorPayload) -> str:
    if isinstance(payload, VoiceBasePayload):
        return payload.media_id
    if isinstance(payload, CustomPayload):
        return payload.call_id
    return payload.call_sid


class MockTelephonyAdapter(TelephonyProvider):
    """Mock telephony provider for testing."""

    def __init__(self, provider_name: ProviderName = ProviderName.CUSTOM) -> None:
        self.provider_name = provider_name
        self._calls: list[OutboundCallRequest] = []
        self._inbound: list[VendorPayload] = []
        self._ended: list[str] = []
        self._credentials_seen: list[dict[str, Any]] = []
        self._known_calls: dict[str, OutboundCallRequest] = {}
        self.reset()

    def reset(self) -> None:
        self._calls.clear()
        self._inbound.clear()
        self._ended.clear()
        self._credentials_seen.clear()
        self._known_calls.clear()
        self._next_call_id = 1
        self._connection_tests = 0
        self._failure: TelephonyProviderError | None = None
        self._connection_failure: ProviderConnectionError | None = None
        self._delay = 0.0
        self._default_status = CallStatus.QUEUED

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
        error_cls: type[TelephonyProviderError] = ProviderRejection,
    ) -> None:
        """Make call operations (inbound, outbound, end, details) raise."""
        self._failure = error_cls(error_message, error_code=error_code) if should_fail else None

    def configure_connection_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock connection failure",
    ) -> None:
        self._connection_failure = (
            ProviderConnectionError(error_message, error_code="MOCK_UNREACHABLE")
            if should_fail
            else None
        )

    def configure_delay(self, seconds: float) -> None:
        self._delay = seconds

    def configure_status(self, status: CallStatus) -> None:
        self._default_status = status

    @property
    def calls(self) -> list[OutboundCallRequest]:
        return self._calls.copy()

    @property
    def inbound_calls(self) -> list[VendorPayload]:
        return self._inbound.copy()

    @property
    def ended_calls(self) -> list[str]:
        return self._ended.copy()

    @property
    def connection_tests(self) -> int:
        return self._connection_tests

    @property
    def credentials_seen(self) -> list[dict[str, Any]]:
        return self._credentials_seen.copy()

    def get_last_call(self) -> OutboundCallRequest | None:
        return self._calls[-1] if self._calls else None

    async def _simulate(self, credentials: Credentials) -> None:
        self._credentials_seen.append(dict(credentials))
        if self._delay:
            await anyio.sleep(self._delay)
        if self._failure is not None:
            raise self._failure

    async def test_connection(self, credentials: Credentials) -> ConnectionTestResult:
        self._connection_tests += 1
        self._credentials_seen.append(dict(credentials))
        if self._delay:
            await anyio.sleep(self._delay)
        if self._connection_failure is not None:
            raise self._connection_failure
        return ConnectionTestResult(
            success=True,
            account_metadata={"mock": True, "provider": self.provider_name.value},
        )

    async def handle_inbound_call(
        self,
        payload: VendorPayload,
        credentials: Credentials,
    ) -> NormalizedInboundCall:
        self._expect_payload(payload, PAYLOAD_TYPES[self.provider_name])
        await self._simulate(credentials)
        self._inbound.append(payload)

        logger.info(
            "Mock: Handling inbound call",
            extra={"provider": self.provider_name.value},
        )
        return NormalizedInboundCall(
            external_call_id=_payload_call_id(payload),
            from_number=payload.from_number,
            to_number=payload.to_number,
            direction=CallDirection.INBOUND,
            provider_name=self.provider_name,
        )

    async def initiate_outbound_call(
        self,
        request: OutboundCallRequest,
        credentials: Credentials,
    ) -> OutboundCallResult:
        logger.info(
            "Mock: Initiating call",
            extra={"provider": self.provider_name.value, "to": request.to_number},
        )
        await self._simulate(credentials)
        self._calls.append(request)

        external_call_id = f"MOCK_{self.provider_name.value.upper()}_{self._next_call_id:06d}"
        self._next_call_id += 1
        self._known_calls[external_call_id] = request

        return OutboundCallResult(
            external_call_id=external_call_id,
            status=self._default_status,
            provider_name=self.provider_name,
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "external_call_id": external_call_id},
        )

    async def end_call(self, external_call_id: str, credentials: Credentials) -> None:
        await self._simulate(credentials)
        if external_call_id not in self._known_calls:
            raise CallNotFoundError(
                f"Mock call {external_call_id} not found",
                error_code="NOT_FOUND",
            )
        self._ended.append(external_call_id)

    async def get_call_details(
        self,
        external_call_id: str,
        credentials: Credentials,
    ) -> CallDetail:
        await self._simulate(credentials)
        request = self._known_calls.get(external_call_id)
        if request is None:
            raise CallNotFoundError(
                f"Mock call {external_call_id} not found",
                error_code="NOT_FOUND",
            )
        status = CallStatus.COMPLETED if external_call_id in self._ended else self._default_status
        return CallDetail(
            external_call_id=external_call_id,
            status=status,
            from_number=request.from_number,
            to_number=request.to_number,
        )
