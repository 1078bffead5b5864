"""
FastAPI router for inbound telephony webhooks.

Vendors post call events to ``/webhooks/telephony/{tenant_id}``. The body is
handed through opaquely to the tenant's active provider adapter; the router
never interprets vendor fields itself.
"""

from __future__ import annotations

import json
from typing import Annotated, Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request, status

from callcenter.shared.logging import get_logger
from callcenter.telephony.config import TelephonyConfig, get_telephony_config
from callcenter.telephony.factory import get_telephony_router
from callcenter.telephony.router import TelephonyRouter
from callcenter.telephony.schemas import InboundCallResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/telephony", tags=["webhooks"])

SIGNATURE_HEADERS = ("X-Twilio-Signature", "X-Webhook-Signature")


def _parse_body(body: bytes, content_type: str) -> dict[str, Any]:
    if "application/json" in content_type:
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "INVALID_WEBHOOK_PAYLOAD", "message": "Body must be a JSON object"},
            )
        return payload

    try:
        return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_WEBHOOK_PAYLOAD", "message": "Body is not valid UTF-8"},
        ) from None


@router.post(
    "/{tenant_id}",
    response_model=InboundCallResponse,
    summary="Receive an inbound call webhook for a tenant",
)
async def receive_inbound_call(
    tenant_id: str,
    request: Request,
    telephony: Annotated[TelephonyRouter, Depends(get_telephony_router)],
    telephony_config: Annotated[TelephonyConfig, Depends(get_telephony_config)],
) -> InboundCallResponse:
    body = await request.body()

    signature = ""
    for header in SIGNATURE_HEADERS:
        if request.headers.get(header):
            signature = request.headers[header]
            break

    # Vendors sign the public callback URL, not whatever the proxy forwarded.
    url = telephony_config.get_webhook_url(tenant_id)
    if not await telephony.verify_webhook_signature(tenant_id, body, signature, url):
        logger.warning("Invalid webhook signature", extra={"tenant_id": tenant_id})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "INVALID_SIGNATURE", "message": "Invalid webhook signature"},
        )

    payload = _parse_body(body, request.headers.get("content-type", ""))
    call = await telephony.route_inbound(tenant_id, payload)

    logger.info(
        "Inbound call webhook processed",
        extra={
            "tenant_id": tenant_id,
            "provider": call.provider_name.value,
            "external_call_id": call.external_call_id,
        },
    )
    return InboundCallResponse.model_validate(call, from_attributes=True)
