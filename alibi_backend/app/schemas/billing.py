"""API schemas for billing and entitlement endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import RestoreResult


class CheckoutSessionRequest(BaseModel):
    pack_id: Optional[str] = Field(alias="packId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionResponse(BaseModel):
    url: str


class RestoreResponse(BaseModel):
    packs: List[str] = Field(default_factory=list)
    subscription_active: bool = Field(alias="subscriptionActive", default=False)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: RestoreResult) -> "RestoreResponse":
        return cls(packs=list(result.packs), subscription_active=result.subscription_active)


class WebhookAck(BaseModel):
    received: bool = True


class HealthResponse(BaseModel):
    ok: bool
    timestamp: datetime
    stripe_configured: bool = Field(alias="stripeConfigured")
    webhook_secret_configured: bool = Field(alias="webhookSecretConfigured")
    base_url: Optional[str] = Field(alias="baseUrl", default=None)
    missing_env_vars: List[str] = Field(alias="missingEnvVars", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)
