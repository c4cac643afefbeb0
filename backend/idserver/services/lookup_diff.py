from typing import Any, Dict, List, Optional
from loguru import logger

from common.utils import epoch, uid_from_matrix_id
from idserver.core.storage import IdentityStore
from idserver.core.user_db import UserDB

async def user_diff(
    store: IdentityStore,
    user_db: UserDB,
    since: int,
    fields: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Users activated or deactivated after `since` (epoch ms), read from the
    userHistory trail. Only the latest entry of each address counts.

    Returns {"new": [...user rows + address], "deleted": [{uid, address}], "timestamp": now}
    where `timestamp` is the value to pass as `since` on the next call.
    """
    timestamp = epoch()
    rows = await store.get_higher_than("userHistory", ["address", "active", "timestamp"], {"timestamp": since})

    latest: Dict[str, Dict[str, Any]] = {}
    for row in sorted(rows, key=lambda r: r["timestamp"]):
        latest[row["address"]] = row

    fields = list(fields or [])
    if "uid" not in fields:
        fields.append("uid")

    uids = [uid_from_matrix_id(address) for address in latest]
    users: Dict[str, Dict[str, Any]] = {}
    if uids:
        for user in await user_db.get("users", fields, {"uid": uids}):
            users[str(user["uid"])] = user

    new, deleted = [], []
    for address, row in latest.items():
        uid = uid_from_matrix_id(address)
        if row["active"]:
            user = users.get(uid)
            if user is None:
                logger.warning(f"{address} is active in history but missing from the user directory")
                continue
            new.append({**user, "address": address})
        else:
            deleted.append({"uid": uid, "address": address})

    return {"new": new, "deleted": deleted, "timestamp": timestamp}
