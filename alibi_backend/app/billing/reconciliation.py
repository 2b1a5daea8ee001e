"""Rebuilds a client's entitlements from the gateway's transaction history."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from ..entitlements.cache import RestoreCache
from ..entitlements.catalog import PackPriceCatalog
from ..entitlements.exceptions import GatewayError
from ..entitlements.models import EntitlementRecord, PackId, RestoreResult, apply_pack, parse_pack_id
from ..entitlements.service import EntitlementService
from .models import METADATA_PACK_ID, GatewayTransaction
from .service import PaymentGateway

logger = logging.getLogger(__name__)


class RestoreService:
    """Answers "what does this client own?" through store, cache and gateway.

    The lookup short-circuits on the first source that knows something: a
    non-empty stored record, then an unexpired cached result, then a live
    query of completed gateway transactions. Gateway results are merged into
    the store when non-empty and cached either way, so clients without
    purchases do not trigger a gateway query on every call. Gateway failures
    degrade to an empty answer and are never raised to the caller.
    """

    def __init__(
        self,
        entitlements: EntitlementService,
        cache: RestoreCache,
        catalog: PackPriceCatalog,
        gateway: Optional[PaymentGateway],
        *,
        page_size: int = 100,
        deadline_seconds: float = 20.0,
        clock: Optional[Callable[[], datetime]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entitlements = entitlements
        self._cache = cache
        self._catalog = catalog
        self._gateway = gateway
        self._page_size = max(1, page_size)
        self._deadline_seconds = deadline_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._monotonic = monotonic

    def restore(self, client_key: Optional[str]) -> RestoreResult:
        if not client_key:
            logger.info("Restore requested without a client key")
            return RestoreResult.empty()

        record = self._entitlements.get_record(client_key)
        if record is not None and not record.is_empty:
            return RestoreResult.from_record(record)

        cached = self._cache.get(client_key)
        if cached is not None:
            logger.info("Using cached gateway result for client %s", client_key)
            return cached

        if self._gateway is None:
            logger.warning("Gateway not configured; cannot reconcile client %s", client_key)
            return RestoreResult.empty()

        # No lock is held here: the gateway query may block on network I/O.
        try:
            result = self._reconcile(self._gateway, client_key)
        except GatewayError as exc:
            logger.error("Failed to query gateway for client %s: %s", client_key, exc)
            return RestoreResult.empty()

        if result.is_empty:
            logger.info("No completed purchases found on the gateway for client %s", client_key)
        else:
            self._entitlements.merge(client_key, result)
            logger.info(
                "Restored entitlements from gateway for client %s: %d packs, subscription=%s",
                client_key,
                len(result.packs),
                result.subscription_active,
            )
        self._cache.set(client_key, result)
        return result

    def _reconcile(self, gateway: PaymentGateway, client_key: str) -> RestoreResult:
        deadline = self._monotonic() + self._deadline_seconds
        transactions = gateway.list_completed_transactions(limit=self._page_size)
        self._check_deadline(deadline)

        matching = [transaction for transaction in transactions if transaction.references(client_key)]
        logger.info("Found %d completed transactions for client %s", len(matching), client_key)

        now = self._clock()
        folded = EntitlementRecord(last_updated=now)
        for transaction in matching:
            pack_id = self._resolve_pack_id(gateway, transaction, deadline)
            if pack_id is None:
                logger.warning("Transaction %s has no identifiable pack", transaction.transaction_id)
                continue
            folded = apply_pack(folded, pack_id, now)
        return RestoreResult.from_record(folded)

    def _resolve_pack_id(
        self,
        gateway: PaymentGateway,
        transaction: GatewayTransaction,
        deadline: float,
    ) -> Optional[PackId]:
        pack_id = parse_pack_id(transaction.metadata.get(METADATA_PACK_ID))
        if pack_id is not None:
            return pack_id

        if transaction.line_item_price_ids is not None:
            price_id = transaction.line_item_price_ids[0] if transaction.line_item_price_ids else None
            pack_id = self._catalog.price_to_pack_id(price_id)
            if pack_id is not None:
                logger.info("Derived pack %s from price %s", pack_id.value, price_id)
            return pack_id

        self._check_deadline(deadline)
        try:
            price_ids = gateway.fetch_line_item_price_ids(transaction.transaction_id)
        except GatewayError as exc:
            logger.warning("Failed to expand line items for %s: %s", transaction.transaction_id, exc)
            return None

        price_id = price_ids[0] if price_ids else None
        pack_id = self._catalog.price_to_pack_id(price_id)
        if pack_id is not None:
            logger.info("Derived pack %s from expanded line items (price %s)", pack_id.value, price_id)
        return pack_id

    def _check_deadline(self, deadline: float) -> None:
        if self._monotonic() > deadline:
            raise GatewayError(f"Gateway query exceeded {self._deadline_seconds:g}s")
