"""Entitlements domain models and services."""

from .cache import InMemoryRestoreCache, RestoreCache
from .catalog import PACK_PRICE_ENV_KEYS, PackPriceCatalog
from .exceptions import (
    AuthenticityError,
    ConfigurationError,
    EntitlementError,
    GatewayError,
    PersistenceError,
)
from .models import (
    BUNDLE_PACK,
    INDIVIDUAL_PACKS,
    SUBSCRIPTION_PACK,
    EntitlementRecord,
    PackId,
    RestoreResult,
    apply_pack,
    merge_result,
    parse_pack_id,
    sort_packs,
)
from .service import EntitlementService, KeyedLock
from .store import (
    EntitlementStore,
    InMemoryEntitlementStore,
    JsonFileEntitlementStore,
    PostgresEntitlementStore,
)

__all__ = [
    "BUNDLE_PACK",
    "INDIVIDUAL_PACKS",
    "PACK_PRICE_ENV_KEYS",
    "SUBSCRIPTION_PACK",
    "AuthenticityError",
    "ConfigurationError",
    "EntitlementError",
    "EntitlementRecord",
    "EntitlementService",
    "EntitlementStore",
    "GatewayError",
    "InMemoryEntitlementStore",
    "InMemoryRestoreCache",
    "JsonFileEntitlementStore",
    "KeyedLock",
    "PackId",
    "PackPriceCatalog",
    "PersistenceError",
    "PostgresEntitlementStore",
    "RestoreCache",
    "RestoreResult",
    "apply_pack",
    "merge_result",
    "parse_pack_id",
    "sort_packs",
]
