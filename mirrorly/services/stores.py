"""Persistence collaborators for inventory and the boutique profile.

The pipeline only needs the small async interfaces below; which backend sits
behind them (document store, relational store, local JSON) is interchangeable.
"""

import logging
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from ..models import Garment, MerchantProfile

logger = logging.getLogger(__name__)

_garment_list = TypeAdapter(list[Garment])


class InventoryStore(Protocol):
    async def get_garment(self, garment_id: str) -> Garment | None: ...

    async def list_garments(self) -> list[Garment]: ...

    async def save_garment(self, garment: Garment) -> str: ...

    async def delete_garment(self, garment_id: str) -> bool: ...


class ProfileStore(Protocol):
    async def get_profile(self) -> MerchantProfile | None: ...

    async def save_profile(self, profile: MerchantProfile) -> None: ...


class InMemoryInventoryStore:
    """Inventory kept in a dict, keyed by garment id."""

    def __init__(self, garments: list[Garment] | None = None):
        self._garments: dict[str, Garment] = {g.id: g for g in garments or []}

    async def get_garment(self, garment_id: str) -> Garment | None:
        return self._garments.get(garment_id)

    async def list_garments(self) -> list[Garment]:
        return list(self._garments.values())

    async def save_garment(self, garment: Garment) -> str:
        self._garments[garment.id] = garment
        return garment.id

    async def delete_garment(self, garment_id: str) -> bool:
        return self._garments.pop(garment_id, None) is not None


class JsonInventoryStore(InMemoryInventoryStore):
    """Inventory list cached in a local JSON file.

    Used as the offline fallback when the primary store misses a deep link.
    A missing or unreadable file is an empty inventory.
    """

    def __init__(self, path: Path):
        self.path = path
        super().__init__(self._load())

    def _load(self) -> list[Garment]:
        if not self.path.exists():
            return []
        try:
            return _garment_list.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable inventory cache %s: %s", self.path, e)
            return []

    def _save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(_garment_list.dump_json(list(self._garments.values()), indent=2))

    async def save_garment(self, garment: Garment) -> str:
        garment_id = await super().save_garment(garment)
        self._save()
        return garment_id

    async def delete_garment(self, garment_id: str) -> bool:
        deleted = await super().delete_garment(garment_id)
        if deleted:
            self._save()
        return deleted


class InMemoryProfileStore:
    def __init__(self, profile: MerchantProfile | None = None):
        self._profile = profile

    async def get_profile(self) -> MerchantProfile | None:
        return self._profile

    async def save_profile(self, profile: MerchantProfile) -> None:
        self._profile = profile


class JsonProfileStore:
    """Single boutique profile persisted as JSON. Last write wins."""

    def __init__(self, path: Path, default: MerchantProfile | None = None):
        self.path = path
        self.default = default

    async def get_profile(self) -> MerchantProfile | None:
        if not self.path.exists():
            return self.default
        try:
            return MerchantProfile.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable profile %s: %s", self.path, e)
            return self.default

    async def save_profile(self, profile: MerchantProfile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(profile.model_dump_json(indent=2), encoding="utf-8")
