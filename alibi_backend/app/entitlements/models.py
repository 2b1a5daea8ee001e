"""Domain models for pack entitlements and their expansion rules."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class PackId(str, Enum):
    """Purchasable content pack tags, plus the reserved bundle and subscription tags."""

    WORK = "work"
    DATE = "date"
    PARENT = "parent"
    GAMER = "gamer"
    HOLIDAY = "holiday"
    ALL = "all"
    SUB_MONTHLY = "sub_monthly"


BUNDLE_PACK = PackId.ALL
SUBSCRIPTION_PACK = PackId.SUB_MONTHLY

INDIVIDUAL_PACKS: Tuple[PackId, ...] = tuple(
    pack for pack in PackId if pack not in {BUNDLE_PACK, SUBSCRIPTION_PACK}
)

_RESERVED_TAGS = frozenset({BUNDLE_PACK.value, SUBSCRIPTION_PACK.value})
_PACK_ALIASES = {"all_access": BUNDLE_PACK}
_PACK_ORDER = {pack.value: index for index, pack in enumerate(INDIVIDUAL_PACKS)}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_pack_id(value: object) -> Optional[PackId]:
    """Return the :class:`PackId` named by ``value`` or ``None`` when unknown."""

    if isinstance(value, PackId):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    alias = _PACK_ALIASES.get(normalized)
    if alias is not None:
        return alias
    try:
        return PackId(normalized)
    except ValueError:
        return None


def sort_packs(tags: Iterable[str]) -> List[str]:
    """Order pack tags by catalog position, unknown tags last and alphabetical."""

    return sorted(set(tags), key=lambda tag: (_PACK_ORDER.get(tag, len(_PACK_ORDER)), tag))


def _tag_value(item: object) -> object:
    # Enum members hash by name, so sets must only ever hold the plain value.
    return item.value if isinstance(item, Enum) else item


class EntitlementRecord(BaseModel):
    """Durable statement of what one client key owns."""

    packs: FrozenSet[str] = Field(default_factory=frozenset)
    subscription_active: bool = Field(default=False, alias="pro")
    last_updated: datetime = Field(default_factory=_utcnow, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @field_validator("packs", mode="before")
    @classmethod
    def _individual_tags_only(cls, value: Any) -> FrozenSet[str]:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        tags = set()
        for item in value:
            tag = _tag_value(item)
            if not isinstance(tag, str) or not tag or tag in _RESERVED_TAGS:
                continue
            tags.add(tag)
        return frozenset(tags)

    @field_serializer("packs")
    def _serialize_packs(self, packs: FrozenSet[str]) -> List[str]:
        return sort_packs(packs)

    @property
    def is_empty(self) -> bool:
        return not self.packs and not self.subscription_active


class RestoreResult(BaseModel):
    """Entitlement answer returned to a client asking what it owns."""

    packs: Tuple[str, ...] = ()
    subscription_active: bool = Field(default=False, alias="subscriptionActive")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def empty(cls) -> "RestoreResult":
        return cls()

    @classmethod
    def from_record(cls, record: EntitlementRecord) -> "RestoreResult":
        return cls(packs=tuple(sort_packs(record.packs)), subscription_active=record.subscription_active)

    @property
    def is_empty(self) -> bool:
        return not self.packs and not self.subscription_active

    def to_record(self, now: datetime) -> EntitlementRecord:
        return EntitlementRecord(
            packs=frozenset(self.packs),
            subscription_active=self.subscription_active,
            last_updated=now,
        )


def apply_pack(record: EntitlementRecord, pack_id: PackId, now: datetime) -> EntitlementRecord:
    """Apply one confirmed purchase to ``record``.

    The bundle tag expands into every individual pack plus the subscription,
    the subscription tag only flips the subscription flag, anything else is
    added to the pack set. Union and boolean OR keep the rule idempotent.
    """

    packs = set(record.packs)
    subscription_active = record.subscription_active
    if pack_id == BUNDLE_PACK:
        packs.update(pack.value for pack in INDIVIDUAL_PACKS)
        subscription_active = True
    elif pack_id == SUBSCRIPTION_PACK:
        subscription_active = True
    else:
        packs.add(pack_id.value)
    return record.model_copy(
        update={
            "packs": frozenset(packs),
            "subscription_active": subscription_active,
            "last_updated": now,
        }
    )


def merge_result(record: EntitlementRecord, result: RestoreResult, now: datetime) -> EntitlementRecord:
    """Union a reconciled result into an existing record without dropping anything."""

    return record.model_copy(
        update={
            "packs": record.packs | frozenset(result.packs),
            "subscription_active": record.subscription_active or result.subscription_active,
            "last_updated": now,
        }
    )
