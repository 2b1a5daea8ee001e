"""Billing domain package providing the gateway integration and purchase flows."""

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
from .reconciliation import RestoreService
from .service import BillingService, PaymentGateway

__all__ = [
    "METADATA_CLIENT_KEY",
    "METADATA_PACK_ID",
    "BillingService",
    "CheckoutMode",
    "CheckoutSession",
    "GatewayEvent",
    "GatewayEventType",
    "GatewaySubscription",
    "GatewayTransaction",
    "PaymentGateway",
    "RestoreService",
    "WebhookAction",
    "WebhookOutcome",
]
