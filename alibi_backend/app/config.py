"""Billing and entitlement configuration helpers."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .entitlements.catalog import PACK_PRICE_ENV_KEYS, PackPriceCatalog
from .entitlements.models import PackId

STORE_BACKENDS = ("file", "postgres", "memory")


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the gateway, entitlement storage and restore cache."""

    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    price_ids: Mapping[PackId, Optional[str]]
    app_base_url: Optional[str]
    entitlements_backend: str
    entitlements_path: str
    restore_cache_ttl_seconds: float
    restore_cache_max_entries: int
    gateway_timeout_seconds: float
    gateway_deadline_seconds: float
    transaction_page_size: int
    cors_allow_origins: Tuple[str, ...] = ("*",)
    db: Mapping[str, Any] = field(default_factory=dict)

    @property
    def gateway_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def webhook_secret_configured(self) -> bool:
        return bool(self.stripe_webhook_secret)

    def build_catalog(self) -> PackPriceCatalog:
        return PackPriceCatalog.from_mapping(self.price_ids)

    def missing_settings(self) -> List[str]:
        """Names of environment variables the gateway flows need but are unset."""

        missing: List[str] = []
        if not self.stripe_secret_key:
            missing.append("STRIPE_SECRET_KEY")
        if not self.stripe_webhook_secret:
            missing.append("STRIPE_WEBHOOK_SECRET")
        missing.extend(self.missing_price_env_keys())
        return missing

    def missing_price_env_keys(self) -> List[str]:
        return [env_key for pack_id, env_key in PACK_PRICE_ENV_KEYS.items() if not self.price_ids.get(pack_id)]


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _db_config(env_mapping: Mapping[str, str]) -> Dict[str, Any]:
    connect_timeout = _to_float(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5.0)
    if connect_timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return dict(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        dbname=env_mapping.get("DB_NAME", "alibi_db"),
        user=env_mapping.get("DB_USER", "alibi_user"),
        password=env_mapping.get("DB_PASSWORD", "alibi_pass"),
        connect_timeout=int(math.ceil(connect_timeout)),
    )


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    price_ids = {
        pack_id: (env_mapping.get(env_key) or "").strip() or None
        for pack_id, env_key in PACK_PRICE_ENV_KEYS.items()
    }

    backend = (env_mapping.get("ENTITLEMENTS_BACKEND") or "file").strip().lower() or "file"
    if backend not in STORE_BACKENDS:
        raise ValueError(f"ENTITLEMENTS_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {backend!r}")

    app_base_url = (env_mapping.get("APP_BASE_URL") or "").strip() or None
    origins = tuple(
        origin.strip()
        for origin in (env_mapping.get("CORS_ALLOW_ORIGINS") or "*").split(",")
        if origin.strip()
    )

    return BillingConfig(
        stripe_secret_key=env_mapping.get("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        price_ids=price_ids,
        app_base_url=app_base_url.rstrip("/") if app_base_url else None,
        entitlements_backend=backend,
        entitlements_path=env_mapping.get("ENTITLEMENTS_PATH", "data/entitlements.json"),
        restore_cache_ttl_seconds=max(0.0, _to_float(env_mapping.get("RESTORE_CACHE_TTL_SECONDS"), default=300.0)),
        restore_cache_max_entries=max(1, _to_int(env_mapping.get("RESTORE_CACHE_MAX_ENTRIES"), default=10_000)),
        gateway_timeout_seconds=max(0.1, _to_float(env_mapping.get("GATEWAY_TIMEOUT_SECONDS"), default=10.0)),
        gateway_deadline_seconds=max(0.1, _to_float(env_mapping.get("GATEWAY_DEADLINE_SECONDS"), default=20.0)),
        transaction_page_size=min(100, max(1, _to_int(env_mapping.get("TRANSACTION_PAGE_SIZE"), default=100))),
        cors_allow_origins=origins or ("*",),
        db=_db_config(env_mapping),
    )
