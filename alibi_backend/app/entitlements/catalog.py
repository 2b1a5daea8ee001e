"""Static price catalog mapping gateway price ids to pack identifiers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .exceptions import ConfigurationError
from .models import PackId


PACK_PRICE_ENV_KEYS: Dict[PackId, str] = {
    PackId.WORK: "PRICE_WORK",
    PackId.DATE: "PRICE_DATE",
    PackId.PARENT: "PRICE_PARENT",
    PackId.GAMER: "PRICE_GAMER",
    PackId.HOLIDAY: "PRICE_HOLIDAY",
    PackId.ALL: "PRICE_ALL",
    PackId.SUB_MONTHLY: "PRICE_SUB_MONTHLY",
}


@dataclass(frozen=True)
class PackPriceCatalog:
    """Bidirectional, injective table between packs and gateway price ids."""

    pack_to_price: Mapping[PackId, str]
    price_to_pack: Mapping[str, PackId] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, mapping: Mapping[PackId, Optional[str]]) -> "PackPriceCatalog":
        """Build the catalog, ignoring unset prices and rejecting shared ones."""

        forward: Dict[PackId, str] = {}
        reverse: Dict[str, PackId] = {}
        for pack_id, price_id in mapping.items():
            if not price_id:
                continue
            existing = reverse.get(price_id)
            if existing is not None and existing != pack_id:
                raise ConfigurationError(
                    f"Price {price_id} is mapped to both {existing.value} and {pack_id.value}",
                    detail={"price_id": price_id},
                )
            forward[pack_id] = price_id
            reverse[price_id] = pack_id
        return cls(pack_to_price=forward, price_to_pack=reverse)

    def price_for_pack(self, pack_id: PackId) -> str:
        """Return the gateway price id for ``pack_id``, raising if unmapped."""

        try:
            return self.pack_to_price[pack_id]
        except KeyError as exc:
            env_key = PACK_PRICE_ENV_KEYS.get(pack_id, "?")
            raise ConfigurationError(
                f"Price ID not configured for {pack_id.value} ({env_key})",
                detail={"pack_id": pack_id.value},
            ) from exc

    def price_to_pack_id(self, price_id: Optional[str]) -> Optional[PackId]:
        if not price_id:
            return None
        return self.price_to_pack.get(price_id)

    def missing_env_keys(self) -> List[str]:
        return [env_key for pack_id, env_key in PACK_PRICE_ENV_KEYS.items() if pack_id not in self.pack_to_price]
