"""Error taxonomy for the entitlement and billing flows."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class EntitlementError(Exception):
    """Base error carrying an API-facing code and status."""

    code = "entitlement_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, detail: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        base_detail: Dict[str, Any] = {"error": self.code, "message": message}
        if detail:
            base_detail.update(detail)
        self._payload = base_detail

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class AuthenticityError(EntitlementError):
    """Webhook signature missing or not valid for the raw payload."""

    code = "invalid_signature"
    status_code = status.HTTP_400_BAD_REQUEST


class ConfigurationError(EntitlementError):
    """Gateway credentials or price mappings are not configured."""

    code = "not_configured"
    status_code = status.HTTP_400_BAD_REQUEST


class GatewayError(EntitlementError):
    """The payment gateway could not be reached or rejected the call."""

    code = "gateway_unavailable"
    status_code = status.HTTP_502_BAD_GATEWAY


class PersistenceError(EntitlementError):
    """Entitlement storage could not be read or written."""

    code = "persistence_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "AuthenticityError",
    "ConfigurationError",
    "EntitlementError",
    "GatewayError",
    "PersistenceError",
]
