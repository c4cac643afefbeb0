"""
Pepper rotation: full rebuild of the hash catalog under a freshly generated pepper.

Idle -> RetiringOldPepper -> Rebuilding -> Publishing -> Idle

The new pepper is written to the `current` slot only once its hashes are
stored, so readers never see a current pepper with an empty catalog. On a
failed rebuild the `current` slot is left untouched, the `previous` slot is
restored and the rows already written under the discarded pepper are removed.
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import Optional
from loguru import logger

from common.errors import PepperNotFoundError
from idserver.core.crypto import random_string
from idserver.core.pepper_store import PepperStore
from idserver.core.storage import IdentityStore
from idserver.core.user_db import UserDB, DB_FIELDS_TO_HASH
from idserver.services.active_filter import ActiveUserFilter, to_updatable_fields
from idserver.services.update_hash import BatchResult, FailurePolicy, HashComputationPool
from infrastructure.monitoring import monitor

class RotationState(str, enum.Enum):
    IDLE = "idle"
    RETIRING_OLD_PEPPER = "retiring_old_pepper"
    REBUILDING = "rebuilding"
    PUBLISHING = "publishing"

@dataclass
class RotationResult:
    pepper: str
    retired: int = 0
    batch: BatchResult = field(default_factory=BatchResult)

class PepperRotationJob:
    def __init__(
        self,
        store: IdentityStore,
        user_db: UserDB,
        active_filter: ActiveUserFilter,
        server_name: str,
        pool: Optional[HashComputationPool] = None,
        pepper_length: int = 32,
        policy: FailurePolicy = FailurePolicy.STRICT,
    ):
        self.store = store
        self.peppers = PepperStore(store)
        self.user_db = user_db
        self.active_filter = active_filter
        self.server_name = server_name
        self.pool = pool or HashComputationPool(store, self.peppers)
        self.pepper_length = pepper_length
        self.policy = policy
        self.state = RotationState.IDLE

    async def _retire_previous(self) -> int:
        try:
            return await self.peppers.retire_previous()
        except Exception as e:
            logger.error(f"Unable to clean old hashes: {e}")
            return 0

    async def _rebuild(self, pepper: str) -> BatchResult:
        rows = await self.user_db.get_all("users", [*DB_FIELDS_TO_HASH, "uid"])
        users = await self.active_filter.filter(rows)
        return await self.pool.run(to_updatable_fields(users, self.server_name), pepper=pepper, policy=self.policy)

    async def _discard(self, pepper: str, previous: Optional[str] = None) -> None:
        # The previous slot must not point at the still-current pepper,
        # otherwise the next rotation retires the live hashes
        if previous is not None:
            try:
                await self.peppers.shift_to_previous(previous)
            except Exception as e:
                logger.error(f"Unable to restore the previous pepper: {e}")
        try:
            await self.store.delete_where("hashes", "pepper", pepper)
        except Exception as e:
            logger.error(f"Unable to remove hashes of the discarded pepper: {e}")

    async def run(self) -> RotationResult:
        try:
            self.state = RotationState.RETIRING_OLD_PEPPER
            retired = await self._retire_previous()
            slots = await self.peppers.read()
            if slots.current is None:
                raise PepperNotFoundError("current")
            if not slots.current:
                logger.info("No pepper published yet, running the first rotation")
            current = slots.current
            previous = slots.previous or ""
            new_pepper = random_string(self.pepper_length)

            self.state = RotationState.REBUILDING
            shifted, batch = await asyncio.gather(
                self.peppers.shift_to_previous(current),
                self._rebuild(new_pepper),
                return_exceptions=True,
            )
            errors = [r for r in (shifted, batch) if isinstance(r, BaseException)]
            if errors:
                await self._discard(new_pepper, previous if shifted is None else None)
                raise errors[0]

            self.state = RotationState.PUBLISHING
            try:
                await self.peppers.publish(new_pepper, expected=current)
            except Exception:
                await self._discard(new_pepper, previous)
                raise
        except Exception as e:
            monitor.track_rotation("failed")
            logger.error(f"Update hashes failed: {e}")
            raise
        finally:
            self.state = RotationState.IDLE

        monitor.track_rotation("success")
        logger.info(f"Identity server: new pepper published ({batch.stored} hashes)")
        return RotationResult(pepper=new_pepper, retired=retired, batch=batch)
