"""Stripe implementation of the payment gateway protocol."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import stripe

from ..entitlements.exceptions import AuthenticityError, GatewayError
from .models import (
    CheckoutMode,
    GatewayEvent,
    GatewaySubscription,
    GatewayTransaction,
    safe_metadata,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, dict):
        return obj
    return dict(obj)


def _price_ids(line_items: Any) -> Tuple[str, ...]:
    items = _as_dict(line_items).get("data") or []
    price_ids: List[str] = []
    for item in items:
        price = _as_dict(item).get("price")
        price_id = price.get("id") if isinstance(price, dict) else price
        if price_id:
            price_ids.append(str(price_id))
    return tuple(price_ids)


def transaction_from_session(session: Any) -> GatewayTransaction:
    data = _as_dict(session)
    line_items = data.get("line_items")
    return GatewayTransaction(
        transaction_id=str(data.get("id", "")),
        client_reference_id=data.get("client_reference_id"),
        metadata=safe_metadata(data.get("metadata")),
        line_item_price_ids=_price_ids(line_items) if line_items is not None else None,
        amount_total=data.get("amount_total"),
    )


class StripePaymentGateway:
    """Talks to Stripe through the module level API of the ``stripe`` library."""

    def __init__(self, api_key: str, *, timeout_seconds: float = 10.0) -> None:
        if not api_key:
            raise ValueError("api_key must be provided")
        self._api_key = api_key
        # The module API has a single shared HTTP client; bound its timeout.
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    def create_checkout_session(
        self,
        *,
        price_id: str,
        mode: CheckoutMode,
        client_key: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, object]:
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": mode.value,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "client_reference_id": client_key,
        }
        if mode == CheckoutMode.SUBSCRIPTION:
            # Invoice events only reference the subscription, so it carries the key too.
            params["subscription_data"] = {"metadata": metadata}
        try:
            session = stripe.checkout.Session.create(api_key=self._api_key, **params)
        except stripe.StripeError as exc:
            raise GatewayError(f"Failed to create checkout session: {exc}") from exc
        data = _as_dict(session)
        return {"id": data.get("id"), "url": data.get("url")}

    def construct_event(self, payload: bytes, signature: str, secret: str) -> GatewayEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as exc:
            raise AuthenticityError(f"Webhook signature verification failed: {exc}") from exc
        except ValueError as exc:
            raise AuthenticityError(f"Webhook payload could not be decoded: {exc}") from exc

        data = _as_dict(event)
        return GatewayEvent(
            event_id=str(data.get("id", "")),
            event_type=str(data.get("type", "")),
            data_object=_as_dict((data.get("data") or {}).get("object")),
        )

    def list_completed_transactions(self, *, limit: int) -> List[GatewayTransaction]:
        page_size = max(1, min(limit, MAX_PAGE_SIZE))
        try:
            sessions = stripe.checkout.Session.list(
                api_key=self._api_key,
                limit=page_size,
                status="complete",
            )
        except stripe.StripeError as exc:
            raise GatewayError(f"Failed to list checkout sessions: {exc}") from exc
        return [transaction_from_session(session) for session in _as_dict(sessions).get("data") or []]

    def fetch_line_item_price_ids(self, transaction_id: str) -> List[str]:
        try:
            session = stripe.checkout.Session.retrieve(
                transaction_id,
                api_key=self._api_key,
                expand=["line_items"],
            )
        except stripe.StripeError as exc:
            raise GatewayError(f"Failed to expand line items for {transaction_id}: {exc}") from exc
        return list(_price_ids(_as_dict(session).get("line_items")))

    def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            raise GatewayError(f"Failed to retrieve subscription {subscription_id}: {exc}") from exc
        data = _as_dict(subscription)
        return GatewaySubscription(
            subscription_id=str(data.get("id", subscription_id)),
            status=data.get("status"),
            metadata=safe_metadata(data.get("metadata")),
            client_reference_id=data.get("client_reference_id"),
        )


def create_gateway(api_key: Optional[str], *, timeout_seconds: float) -> Optional[StripePaymentGateway]:
    if not api_key:
        logger.warning("STRIPE_SECRET_KEY not found in environment")
        return None
    logger.info("Stripe initialized")
    return StripePaymentGateway(api_key, timeout_seconds=timeout_seconds)
