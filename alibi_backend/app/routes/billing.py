"""API routes exposing checkout, webhook and restore functionality."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from ..entitlements import AuthenticityError, ConfigurationError, GatewayError, parse_pack_id
from ..schemas.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    HealthResponse,
    RestoreResponse,
    WebhookAck,
)
from ..services.billing import get_billing_config, get_billing_service, get_restore_service

logger = logging.getLogger(__name__)

CLIENT_KEY_HEADER = "X-User-Key"
ISSUED_CLIENT_KEY_HEADER = "X-Set-User-Key"

router = APIRouter(tags=["billing"])


@router.get("/api/health", response_model=HealthResponse)
def health() -> HealthResponse:
    config = get_billing_config()
    missing = config.missing_price_env_keys()
    return HealthResponse(
        ok=not missing,
        timestamp=datetime.now(timezone.utc),
        stripe_configured=config.gateway_configured,
        webhook_secret_configured=config.webhook_secret_configured,
        base_url=config.app_base_url,
        missing_env_vars=missing,
    )


@router.post("/api/create-checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    request: Request,
    response: Response,
    client_key: Optional[str] = Header(None, alias=CLIENT_KEY_HEADER),
) -> CheckoutSessionResponse:
    pack_id = parse_pack_id(payload.pack_id)
    if pack_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid pack ID")

    if not client_key:
        client_key = str(uuid4())
        response.headers[ISSUED_CLIENT_KEY_HEADER] = client_key

    base_url = get_billing_config().app_base_url or str(request.base_url)
    service = get_billing_service()
    try:
        session = service.create_checkout_session(pack_id=pack_id, client_key=client_key, base_url=base_url)
    except (ConfigurationError, GatewayError) as exc:
        logger.error("Checkout error: %s", exc)
        raise exc.to_http_exception() from exc
    return CheckoutSessionResponse(url=session.checkout_url)


@router.post("/api/stripe-webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAck:
    # Signature verification needs the body bytes exactly as received.
    payload = await request.body()
    service = get_billing_service()
    try:
        outcome = await run_in_threadpool(service.handle_webhook, payload, signature)
    except (AuthenticityError, ConfigurationError) as exc:
        logger.warning("Rejected webhook: %s", exc)
        raise exc.to_http_exception() from exc
    return WebhookAck(received=outcome.received)


@router.get("/api/restore", response_model=RestoreResponse)
def restore_entitlements(
    client_key: Optional[str] = Header(None, alias=CLIENT_KEY_HEADER),
) -> RestoreResponse:
    result = get_restore_service().restore(client_key)
    return RestoreResponse.from_result(result)


@router.get("/success", include_in_schema=False)
def checkout_success(session_id: Optional[str] = Query(None)) -> RedirectResponse:
    target = "/success.html"
    if session_id:
        target += f"?cs={session_id}"
    return RedirectResponse(url=target)
