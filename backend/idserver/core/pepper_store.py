from dataclasses import dataclass
from typing import Optional
from loguru import logger

from common.errors import PepperNotFoundError, ServiceError
from idserver.core.storage import IdentityStore
from idserver.models import PEPPER_SLOT, PREVIOUS_PEPPER_SLOT

@dataclass(frozen=True)
class PepperSlots:
    current: Optional[str]
    previous: Optional[str]

class PepperStore:
    """
    The two pepper slots (`current`, `previous`) kept in the keys table.
    Only the rotation job writes here; `publish` is a compare-and-swap on the
    current slot so a concurrent writer is detected rather than overwritten.
    """

    def __init__(self, store: IdentityStore):
        self.store = store

    async def _read(self, slot: str) -> Optional[str]:
        rows = await self.store.get("keys", ["data"], {"name": slot})
        if not rows:
            return None
        return rows[0]["data"]

    async def current(self) -> str:
        """Current pepper; a missing or never published slot is fatal for the caller."""
        value = await self._read(PEPPER_SLOT)
        if not value:
            raise PepperNotFoundError("current")
        return value

    async def previous(self) -> Optional[str]:
        value = await self._read(PREVIOUS_PEPPER_SLOT)
        return value or None

    async def read(self) -> PepperSlots:
        return PepperSlots(current=await self._read(PEPPER_SLOT), previous=await self.previous())

    async def retire_previous(self) -> int:
        """Deletes every hash computed under the previous pepper. Returns the number of rows deleted."""
        previous = await self.previous()
        if previous is None:
            return 0
        deleted = await self.store.delete_where("hashes", "pepper", previous)
        logger.info(f"Retired previous pepper: {deleted} hashes deleted")
        return deleted

    async def shift_to_previous(self, value: str) -> None:
        updated = await self.store.update("keys", {"data": value}, "name", PREVIOUS_PEPPER_SLOT)
        if not updated:
            await self.store.insert("keys", {"name": PREVIOUS_PEPPER_SLOT, "data": value})

    async def publish(self, new: str, expected: str) -> None:
        updated = await self.store.update_where(
            "keys", {"data": new}, {"name": PEPPER_SLOT, "data": expected}
        )
        if not updated:
            raise ServiceError("Current pepper changed during rotation", service_name="pepper_store")
