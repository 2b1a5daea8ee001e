"""Domain models for the payment gateway integration."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import PackId

METADATA_CLIENT_KEY = "userKey"
METADATA_PACK_ID = "packId"


class CheckoutMode(str, Enum):
    """Gateway checkout modes."""

    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"


class GatewayEventType(str, Enum):
    """Webhook event types that the application reacts to."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAID = "invoice.paid"


class WebhookAction(str, Enum):
    """What processing a verified webhook event resulted in."""

    GRANTED = "granted"
    GRANT_FAILED = "grant_failed"
    SKIPPED = "skipped"
    IGNORED = "ignored"


class GatewayEvent(BaseModel):
    """Verified webhook event as delivered by the gateway."""

    event_id: str
    event_type: str
    data_object: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def metadata(self) -> Dict[str, str]:
        return safe_metadata(self.data_object.get("metadata"))


class GatewayTransaction(BaseModel):
    """A completed checkout session listed from the gateway's history.

    ``line_item_price_ids`` is ``None`` when the listing did not expand line
    items, and a (possibly empty) tuple once they are known.
    """

    transaction_id: str
    client_reference_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    line_item_price_ids: Optional[Tuple[str, ...]] = None
    amount_total: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    def references(self, client_key: str) -> bool:
        return client_key in {self.client_reference_id, self.metadata.get(METADATA_CLIENT_KEY)}


class GatewaySubscription(BaseModel):
    """Recurring subscription object retrieved from the gateway."""

    subscription_id: str
    status: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    client_reference_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def client_key(self) -> Optional[str]:
        return self.metadata.get(METADATA_CLIENT_KEY) or self.client_reference_id


class CheckoutSession(BaseModel):
    """Return value of a checkout session creation request."""

    session_id: str
    checkout_url: str
    client_key: str
    pack_id: PackId
    mode: CheckoutMode

    model_config = ConfigDict(frozen=True)


class WebhookOutcome(BaseModel):
    """Result of processing one verified webhook event."""

    event_type: str
    action: WebhookAction
    client_key: Optional[str] = None
    pack_id: Optional[PackId] = None
    received: bool = True

    model_config = ConfigDict(frozen=True)


def safe_metadata(value: object) -> Dict[str, str]:
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if v is not None}
    return {}
