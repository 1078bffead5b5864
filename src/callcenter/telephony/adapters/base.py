"""
Shared httpx plumbing for vendor adapters.

Normalizes transport failures and vendor error responses onto the interface
error kinds:
- transport error / 5xx -> ProviderConnectionError
- 404 on a call resource -> CallNotFoundError
- other 4xx -> ProviderRejection (or ProviderConnectionError during tests)
"""

from __future__ import annotations

from typing import Any

import httpx

from callcenter.shared.logging import get_logger
from callcenter.telephony.interface import (
    CallNotFoundError,
    ProviderConnectionError,
    ProviderRejection,
    TelephonyProvider,
    TelephonyProviderError,
)

logger = get_logger(__name__)


def safe_json(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {"body": response.text[:500]}
    return data if isinstance(data, dict) else {"body": data}


class HttpTelephonyAdapter(TelephonyProvider):
    """Base class for adapters talking to a vendor REST API over httpx."""

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            # Router-level timeouts are authoritative; this only bounds sockets.
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _error_details(self, body: dict[str, Any]) -> tuple[str | None, str | None]:
        """Extract (message, code) from a vendor error body."""
        message = body.get("message") or body.get("error")
        code = body.get("code")
        return (
            str(message) if message else None,
            str(code) if code is not None else None,
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await self._get_client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                "Vendor HTTP error",
                extra={
                    "provider": self.provider_name.value,
                    "operation": operation,
                    "error": str(e),
                },
            )
            raise ProviderConnectionError(
                message=f"{self.provider_name.value} {operation} failed: HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

    def _check_response(
        self,
        response: httpx.Response,
        *,
        operation: str,
        rejection_cls: type[TelephonyProviderError] = ProviderRejection,
        call_id: str | None = None,
    ) -> dict[str, Any]:
        """Raise the normalized error for a failed response, else return its JSON body."""
        body = safe_json(response)
        if response.status_code < 400:
            return body

        message, code = self._error_details(body)
        message = message or f"HTTP {response.status_code}"
        error_code = code or str(response.status_code)

        logger.error(
            "Vendor request failed",
            extra={
                "provider": self.provider_name.value,
                "operation": operation,
                "status_code": response.status_code,
                "error_code": error_code,
            },
        )

        prefix = f"{self.provider_name.value} {operation} failed"
        if response.status_code == 404 and call_id is not None:
            raise CallNotFoundError(
                message=f"{prefix}: call {call_id} not found",
                error_code=error_code,
                provider_response=body,
            )
        if response.status_code >= 500:
            raise ProviderConnectionError(
                message=f"{prefix}: {message}",
                error_code=error_code,
                provider_response=body,
            )
        raise rejection_cls(
            message=f"{prefix}: {message}",
            error_code=error_code,
            provider_response=body,
        )


def as_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
