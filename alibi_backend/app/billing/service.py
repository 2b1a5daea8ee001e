"""Core service coordinating checkout and webhook flows with the payment gateway."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from ..entitlements.catalog import PackPriceCatalog
from ..entitlements.exceptions import AuthenticityError, ConfigurationError, GatewayError
from ..entitlements.models import SUBSCRIPTION_PACK, PackId, parse_pack_id
from ..entitlements.service import EntitlementService
from .models import (
    METADATA_CLIENT_KEY,
    METADATA_PACK_ID,
    CheckoutMode,
    CheckoutSession,
    GatewayEvent,
    GatewayEventType,
    GatewaySubscription,
    GatewayTransaction,
    WebhookAction,
    WebhookOutcome,
)

logger = logging.getLogger(__name__)

_INVOICE_PAID_EVENTS = {
    GatewayEventType.INVOICE_PAYMENT_SUCCEEDED.value,
    GatewayEventType.INVOICE_PAID.value,
}


class PaymentGateway(Protocol):
    """External payment processor integration.

    Implementations raise :class:`GatewayError` for transport or API failures
    and :class:`AuthenticityError` when an event signature does not verify.
    """

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
        """Create a gateway checkout session and return at least ``id`` and ``url``."""

    def construct_event(self, payload: bytes, signature: str, secret: str) -> GatewayEvent:
        """Verify ``signature`` against the raw ``payload`` and decode the event."""

    def list_completed_transactions(self, *, limit: int) -> List[GatewayTransaction]:
        """Return up to ``limit`` most recent completed checkout sessions."""

    def fetch_line_item_price_ids(self, transaction_id: str) -> List[str]:
        """Expand the line items of one checkout session."""

    def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        """Fetch a subscription object by id."""


@dataclass
class BillingService:
    """Creates checkout sessions and applies verified webhook events."""

    entitlements: EntitlementService
    catalog: PackPriceCatalog
    gateway: Optional[PaymentGateway] = None
    webhook_secret: Optional[str] = None

    def create_checkout_session(
        self,
        *,
        pack_id: PackId,
        client_key: str,
        base_url: str,
    ) -> CheckoutSession:
        if self.gateway is None:
            raise ConfigurationError("Stripe not configured")
        if not client_key:
            raise ValueError("client_key must be provided")

        price_id = self.catalog.price_for_pack(pack_id)
        mode = CheckoutMode.SUBSCRIPTION if pack_id == SUBSCRIPTION_PACK else CheckoutMode.PAYMENT
        base = base_url.rstrip("/")

        provider_session = self.gateway.create_checkout_session(
            price_id=price_id,
            mode=mode,
            client_key=client_key,
            metadata={METADATA_CLIENT_KEY: client_key, METADATA_PACK_ID: pack_id.value},
            success_url=f"{base}/success.html?cs={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/cancel.html",
        )
        logger.info(
            "Checkout session created for client %s pack=%s mode=%s",
            client_key,
            pack_id.value,
            mode.value,
        )
        return CheckoutSession(
            session_id=str(provider_session.get("id", "")),
            checkout_url=str(provider_session.get("url") or ""),
            client_key=client_key,
            pack_id=pack_id,
            mode=mode,
        )

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """Verify and apply one inbound gateway event.

        ``payload`` must be the request body exactly as received. Once the
        signature verifies, every outcome is acknowledged: missing metadata and
        failed grants are logged, since the restore path can rebuild them.
        """

        if not self.webhook_secret:
            raise ConfigurationError("Webhook secret not configured")
        if self.gateway is None:
            raise ConfigurationError("Stripe not configured")
        if not signature:
            raise AuthenticityError("No signature header found")

        event = self.gateway.construct_event(payload, signature, self.webhook_secret)
        logger.info("Webhook event %s id=%s", event.event_type, event.event_id)

        if event.event_type == GatewayEventType.CHECKOUT_SESSION_COMPLETED.value:
            return self._handle_checkout_completed(event)
        if event.event_type in _INVOICE_PAID_EVENTS:
            return self._handle_invoice_paid(event)

        logger.info("Unhandled webhook event: %s", event.event_type)
        return WebhookOutcome(event_type=event.event_type, action=WebhookAction.IGNORED)

    def _handle_checkout_completed(self, event: GatewayEvent) -> WebhookOutcome:
        session = event.data_object
        metadata = event.metadata
        client_key = metadata.get(METADATA_CLIENT_KEY) or session.get("client_reference_id") or None
        raw_pack_id = metadata.get(METADATA_PACK_ID)

        if not client_key or not raw_pack_id:
            logger.error(
                "Missing userKey or packId in checkout webhook",
                extra={"client_key": client_key, "pack_id": raw_pack_id, "session_id": session.get("id")},
            )
            return WebhookOutcome(event_type=event.event_type, action=WebhookAction.SKIPPED, client_key=client_key)

        pack_id = parse_pack_id(raw_pack_id)
        if pack_id is None:
            logger.error("Unknown packId %r in checkout webhook for client %s", raw_pack_id, client_key)
            return WebhookOutcome(event_type=event.event_type, action=WebhookAction.SKIPPED, client_key=client_key)

        return self._grant(event, client_key, pack_id)

    def _handle_invoice_paid(self, event: GatewayEvent) -> WebhookOutcome:
        subscription_id = _invoice_subscription_id(event.data_object)
        if not subscription_id:
            logger.info("Invoice %s is not tied to a subscription", event.data_object.get("id"))
            return WebhookOutcome(event_type=event.event_type, action=WebhookAction.IGNORED)

        assert self.gateway is not None
        try:
            subscription = self.gateway.retrieve_subscription(subscription_id)
        except GatewayError as exc:
            logger.error("Failed to retrieve subscription %s: %s", subscription_id, exc)
            return WebhookOutcome(event_type=event.event_type, action=WebhookAction.SKIPPED)

        client_key = subscription.client_key
        if not client_key:
            logger.error("No userKey in metadata of subscription %s", subscription_id)
            return WebhookOutcome(event_type=event.event_type, action=WebhookAction.SKIPPED)

        return self._grant(event, client_key, SUBSCRIPTION_PACK)

    def _grant(self, event: GatewayEvent, client_key: str, pack_id: PackId) -> WebhookOutcome:
        granted = self.entitlements.grant(client_key, pack_id)
        return WebhookOutcome(
            event_type=event.event_type,
            action=WebhookAction.GRANTED if granted else WebhookAction.GRANT_FAILED,
            client_key=client_key,
            pack_id=pack_id,
        )


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    if subscription:
        return str(subscription)

    # Newer API versions move the reference under ``parent.subscription_details``.
    parent = invoice.get("parent")
    if isinstance(parent, dict):
        details = parent.get("subscription_details")
        if isinstance(details, dict) and details.get("subscription"):
            return str(details["subscription"])
    return None


__all__ = [
    "BillingService",
    "PaymentGateway",
]
