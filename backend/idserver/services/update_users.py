import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from loguru import logger

from common.errors import HashBatchError
from common.utils import epoch, to_matrix_id
from idserver.core.storage import IdentityStore
from idserver.core.user_db import UserDB
from idserver.services.active_filter import ActiveUserFilter, LocalUser
from idserver.services.update_hash import HashComputationPool, UpdatableFields, ValueField, hashable_values
from infrastructure.monitoring import monitor

@dataclass
class UserSyncReport:
    new: List[str] = field(default_factory=list)
    activated: List[str] = field(default_factory=list)
    deactivated: List[str] = field(default_factory=list)
    errors: List[BaseException] = field(default_factory=list)

@dataclass
class KnownFlags:
    # One address has a row per (field, algorithm, pepper); flags may differ across peppers
    any_active: bool = False
    any_inactive: bool = False

class IncrementalUserSyncJob:
    """
    Reconciles the hash catalog with the user directory between two pepper
    rotations: hashes new users, flips the active flag of users that appeared
    on or disappeared from the homeserver, and appends each change to the
    userHistory audit trail.
    """

    def __init__(
        self,
        store: IdentityStore,
        user_db: UserDB,
        active_filter: ActiveUserFilter,
        server_name: str,
        pool: Optional[HashComputationPool] = None,
    ):
        self.store = store
        self.user_db = user_db
        self.active_filter = active_filter
        self.server_name = server_name
        self.pool = pool or HashComputationPool(store)

    async def _add_history(self, address: str, active: int) -> None:
        await self.store.insert("userHistory", {"address": address, "timestamp": epoch(), "active": active})
        monitor.track_history(active)

    async def _set_active(self, address: str, active: int) -> None:
        await self.store.update("hashes", {"active": active}, "value", address)
        await self._add_history(address, active)

    async def _known_addresses(self) -> Dict[str, KnownFlags]:
        known: Dict[str, KnownFlags] = {}
        for row in await self.store.get_all("hashes", ["value", "active"]):
            flags = known.setdefault(row["value"], KnownFlags())
            if int(row["active"] or 0):
                flags.any_active = True
            else:
                flags.any_inactive = True
        return known

    async def _hash_new_users(self, new_users: UpdatableFields, report: UserSyncReport) -> None:
        try:
            await self.pool.run(new_users)
            failed: Set[str] = set()
        except HashBatchError as e:
            failed = {unit.matrix_address for unit in e.failures}
            await self._forget(failed, report, e)
        except Exception as e:
            failed = set(new_users)
            await self._forget(failed, report, e)

        # History only for users whose hashes are all stored
        for address, fields in new_users.items():
            if address not in failed and fields.active:
                await self._add_history(address, 1)

    async def _forget(self, addresses: Set[str], report: UserSyncReport, error: Exception) -> None:
        """Removes partially stored new users so the next run treats them as new again."""
        logger.error(f"Unable to hash new users, retrying next run: {error}")
        report.errors.append(error)
        for address in addresses:
            report.new.remove(address)
            await self.store.delete_where("hashes", "value", address)

    async def run(self) -> UserSyncReport:
        rows, known, uids = await asyncio.gather(
            self.user_db.get_all("users", ["uid", "mail", "mobile"]),
            self._known_addresses(),
            self.active_filter.homeserver_uids(),
        )
        report = UserSyncReport()
        updates = []
        processed: Set[str] = set()
        local_addresses: Set[str] = set()
        new_users: UpdatableFields = {}

        for row in rows:
            user = LocalUser.from_row(row)
            address = to_matrix_id(user.uid, self.server_name)
            local_addresses.add(address)
            active = self.active_filter.is_active(user.uid, uids)

            if address not in known:
                fields = ValueField(active=active, email=user.mail, phone=user.mobile)
                if not any(True for _ in hashable_values(fields)):
                    # Nothing to hash, so the catalog would never learn about this user
                    continue
                logger.info(f"New user detected: {address}")
                processed.add(address)
                report.new.append(address)
                if not self.active_filter.is_publishable(user.uid, uids):
                    logger.debug(f"{address} is not provisioned on the homeserver yet, not hashed")
                    continue
                new_users[address] = fields
            elif active and known[address].any_inactive:
                logger.info(f"User reactivated: {address}")
                processed.add(address)
                report.activated.append(address)
                updates.append(self._set_active(address, 1))

        if new_users:
            updates.append(self._hash_new_users(new_users, report))

        for address, flags in known.items():
            if address in local_addresses or address in processed or not flags.any_active:
                continue
            logger.info(f"User deactivated: {address}")
            processed.add(address)
            report.deactivated.append(address)
            updates.append(self._set_active(address, 0))

        for result in await asyncio.gather(*updates, return_exceptions=True):
            if isinstance(result, BaseException):
                logger.error(f"Users update failed: {result}")
                report.errors.append(result)
        return report
