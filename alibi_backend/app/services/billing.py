"""Application wiring for the billing and entitlement services."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import psycopg2

from ..billing import BillingService, RestoreService
from ..billing.gateway import StripePaymentGateway, create_gateway
from ..config import BillingConfig, load_billing_config
from ..entitlements import (
    EntitlementService,
    EntitlementStore,
    InMemoryEntitlementStore,
    InMemoryRestoreCache,
    JsonFileEntitlementStore,
    PackPriceCatalog,
    PostgresEntitlementStore,
)


logger = logging.getLogger("billing")


def create_entitlement_store(config: BillingConfig) -> EntitlementStore:
    """Build the storage backend selected by ``ENTITLEMENTS_BACKEND``."""

    if config.entitlements_backend == "memory":
        logger.warning("Using in-memory entitlement store; grants are lost on restart")
        return InMemoryEntitlementStore()
    if config.entitlements_backend == "postgres":
        db_config = dict(config.db)
        store = PostgresEntitlementStore(lambda: psycopg2.connect(**db_config))
        store.ensure_schema()
        return store
    logger.info("Entitlements stored in %s", config.entitlements_path)
    return JsonFileEntitlementStore(config.entitlements_path)


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_catalog() -> PackPriceCatalog:
    return get_billing_config().build_catalog()


@lru_cache(maxsize=1)
def get_gateway() -> Optional[StripePaymentGateway]:
    config = get_billing_config()
    return create_gateway(config.stripe_secret_key, timeout_seconds=config.gateway_timeout_seconds)


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    return EntitlementService(create_entitlement_store(get_billing_config()))


@lru_cache(maxsize=1)
def get_restore_cache() -> InMemoryRestoreCache:
    config = get_billing_config()
    return InMemoryRestoreCache(
        ttl_seconds=config.restore_cache_ttl_seconds,
        max_entries=config.restore_cache_max_entries,
    )


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = get_billing_config()
    return BillingService(
        entitlements=get_entitlement_service(),
        catalog=get_catalog(),
        gateway=get_gateway(),
        webhook_secret=config.stripe_webhook_secret,
    )


@lru_cache(maxsize=1)
def get_restore_service() -> RestoreService:
    config = get_billing_config()
    return RestoreService(
        get_entitlement_service(),
        get_restore_cache(),
        get_catalog(),
        get_gateway(),
        page_size=config.transaction_page_size,
        deadline_seconds=config.gateway_deadline_seconds,
    )


def log_missing_settings(config: BillingConfig) -> None:
    missing = config.missing_settings()
    if not missing:
        logger.info("All billing environment variables configured")
        return
    logger.warning("Missing environment variables: %s", ", ".join(missing))


def reset_services() -> None:
    """Drop every cached singleton so the next call rebuilds from the environment."""

    for factory in (
        get_billing_config,
        get_catalog,
        get_gateway,
        get_entitlement_service,
        get_restore_cache,
        get_billing_service,
        get_restore_service,
    ):
        factory.cache_clear()


__all__ = [
    "create_entitlement_store",
    "get_billing_config",
    "get_billing_service",
    "get_catalog",
    "get_entitlement_service",
    "get_gateway",
    "get_restore_cache",
    "get_restore_service",
    "log_missing_settings",
    "reset_services",
]
