from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from alibi_backend.app.billing import GatewaySubscription, GatewayTransaction, RestoreService
from alibi_backend.app.entitlements import (
    EntitlementRecord,
    EntitlementService,
    GatewayError,
    InMemoryEntitlementStore,
    InMemoryRestoreCache,
    PackId,
    PackPriceCatalog,
    RestoreResult,
)


class ManualClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakePaymentGateway:
    """Serves a fixed transaction history and records every call."""

    def __init__(self, transactions: Optional[List[GatewayTransaction]] = None) -> None:
        self.transactions = list(transactions or [])
        self.line_items: Dict[str, List[str]] = {}
        self.list_calls: List[int] = []
        self.fetch_calls: List[str] = []
        self.list_error: Optional[GatewayError] = None
        self.fetch_error: Optional[GatewayError] = None

    @property
    def call_count(self) -> int:
        return len(self.list_calls) + len(self.fetch_calls)

    def create_checkout_session(self, **kwargs) -> Dict[str, object]:
        raise AssertionError("restore must not create checkout sessions")

    def construct_event(self, payload, signature, secret):
        raise AssertionError("restore must not verify events")

    def list_completed_transactions(self, *, limit: int) -> List[GatewayTransaction]:
        self.list_calls.append(limit)
        if self.list_error is not None:
            raise self.list_error
        return list(self.transactions)

    def fetch_line_item_price_ids(self, transaction_id: str) -> List[str]:
        self.fetch_calls.append(transaction_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.line_items.get(transaction_id, []))

    def retrieve_subscription(self, subscription_id: str) -> GatewaySubscription:
        raise AssertionError("restore must not retrieve subscriptions")


class SteppingMonotonic:
    """Monotonic clock that advances by ``step`` seconds on every read."""

    def __init__(self, step: float) -> None:
        self.value = 0.0
        self.step = step

    def __call__(self) -> float:
        current = self.value
        self.value += self.step
        return current


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> InMemoryEntitlementStore:
    return InMemoryEntitlementStore()


@pytest.fixture
def cache(clock) -> InMemoryRestoreCache:
    return InMemoryRestoreCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def catalog() -> PackPriceCatalog:
    return PackPriceCatalog.from_mapping(
        {PackId.WORK: "price_work", PackId.DATE: "price_date", PackId.ALL: "price_all"}
    )


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def make_service(store, cache, catalog, clock):
    def factory(gateway, **kwargs) -> RestoreService:
        return RestoreService(
            EntitlementService(store, clock=clock),
            cache,
            catalog,
            gateway,
            clock=clock,
            **kwargs,
        )

    return factory


def _transaction(transaction_id: str, **fields) -> GatewayTransaction:
    return GatewayTransaction(transaction_id=transaction_id, **fields)


def test_stored_record_is_returned_without_gateway_calls(store, gateway, make_service, clock):
    store.save({"client-1": EntitlementRecord(packs={"work"}, subscription_active=True, last_updated=clock.now)})

    result = make_service(gateway).restore("client-1")

    assert result == RestoreResult(packs=("work",), subscription_active=True)
    assert gateway.call_count == 0


def test_missing_client_key_returns_empty(gateway, make_service):
    assert make_service(gateway).restore(None).is_empty
    assert make_service(gateway).restore("").is_empty
    assert gateway.call_count == 0


def test_no_purchases_caches_empty_result_without_storing(store, cache, gateway, make_service):
    service = make_service(gateway)

    first = service.restore("client-1")
    second = service.restore("client-1")

    assert first.is_empty and second.is_empty
    assert len(gateway.list_calls) == 1
    assert cache.get("client-1") == RestoreResult.empty()
    assert store.save_count == 0


def test_cached_result_expires(gateway, make_service, clock):
    service = make_service(gateway)
    service.restore("client-1")

    clock.advance(301)
    service.restore("client-1")

    assert len(gateway.list_calls) == 2


def test_metadata_pack_is_restored_and_persisted(store, cache, gateway, make_service):
    gateway.transactions = [
        _transaction("cs_1", client_reference_id="client-1", metadata={"userKey": "client-1", "packId": "gamer"}),
        _transaction("cs_2", client_reference_id="someone-else", metadata={"packId": "work"}),
    ]

    result = make_service(gateway).restore("client-1")

    assert result == RestoreResult(packs=("gamer",), subscription_active=False)
    assert store.load()["client-1"].packs == frozenset({"gamer"})
    assert cache.get("client-1") == result
    assert gateway.fetch_calls == []


def test_transaction_matches_on_metadata_client_key_alone(gateway, make_service):
    gateway.transactions = [_transaction("cs_1", metadata={"userKey": "client-1", "packId": "holiday"})]

    assert make_service(gateway).restore("client-1").packs == ("holiday",)


def test_pack_is_derived_from_expanded_price(gateway, make_service):
    gateway.transactions = [_transaction("cs_1", client_reference_id="client-1", line_item_price_ids=("price_date",))]

    result = make_service(gateway).restore("client-1")

    assert result.packs == ("date",)
    assert gateway.fetch_calls == []


def test_line_items_are_fetched_when_not_expanded(gateway, make_service):
    gateway.transactions = [_transaction("cs_1", client_reference_id="client-1")]
    gateway.line_items["cs_1"] = ["price_work"]

    result = make_service(gateway).restore("client-1")

    assert result.packs == ("work",)
    assert gateway.fetch_calls == ["cs_1"]


def test_bundle_transaction_expands(gateway, make_service):
    gateway.transactions = [_transaction("cs_1", client_reference_id="client-1", line_item_price_ids=("price_all",))]

    result = make_service(gateway).restore("client-1")

    assert result.packs == ("work", "date", "parent", "gamer", "holiday")
    assert result.subscription_active is True


def test_unresolvable_transactions_are_skipped(gateway, make_service):
    gateway.transactions = [
        _transaction("cs_1", client_reference_id="client-1", line_item_price_ids=("price_unknown",)),
        _transaction("cs_2", client_reference_id="client-1", metadata={"packId": "date"}),
    ]

    assert make_service(gateway).restore("client-1").packs == ("date",)


def test_line_item_fetch_failure_skips_transaction(gateway, make_service):
    gateway.transactions = [
        _transaction("cs_1", client_reference_id="client-1"),
        _transaction("cs_2", client_reference_id="client-1", metadata={"packId": "work"}),
    ]
    gateway.fetch_error = GatewayError("boom")

    assert make_service(gateway).restore("client-1").packs == ("work",)


def test_gateway_failure_degrades_to_empty_without_caching(store, cache, gateway, make_service):
    gateway.list_error = GatewayError("gateway unavailable")

    result = make_service(gateway).restore("client-1")

    assert result.is_empty
    assert cache.get("client-1") is None
    assert store.save_count == 0


def test_missing_gateway_returns_empty(store, make_service):
    assert make_service(None).restore("client-1").is_empty
    assert store.save_count == 0


def test_deadline_abandons_slow_reconciliation(cache, gateway, make_service):
    gateway.transactions = [_transaction("cs_1", client_reference_id="client-1")]
    gateway.line_items["cs_1"] = ["price_work"]

    service = make_service(gateway, deadline_seconds=1.0, monotonic=SteppingMonotonic(step=5.0))

    assert service.restore("client-1").is_empty
    assert gateway.fetch_calls == []
    assert cache.get("client-1") is None


def test_restored_result_merges_with_existing_empty_record(store, gateway, make_service, clock):
    store.save({"client-1": EntitlementRecord(last_updated=clock.now)})
    gateway.transactions = [_transaction("cs_1", client_reference_id="client-1", metadata={"packId": "parent"})]

    make_service(gateway).restore("client-1")

    assert store.load()["client-1"].packs == frozenset({"parent"})


def test_page_size_is_passed_to_gateway(gateway, make_service):
    make_service(gateway, page_size=25).restore("client-1")

    assert gateway.list_calls == [25]
