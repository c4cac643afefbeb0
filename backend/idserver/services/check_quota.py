import asyncio
from typing import Dict, Optional
from loguru import logger

from common.errors import ConfigurationError
from idserver.core.storage import IdentityStore
from idserver.core.user_db import MatrixDB

async def get_user_usage(matrix_db: MatrixDB, user_id: str) -> int:
    """Total size of the media uploaded by a homeserver user."""
    rows = await matrix_db.get("local_media_repository", ["media_length"], {"user_id": user_id})
    return sum(int(row["media_length"] or 0) for row in rows)

async def save_user_usage(store: IdentityStore, user_id: str, size: int) -> None:
    await store.delete_where("userQuotas", "user_id", user_id)
    await store.insert("userQuotas", {"user_id": user_id, "size": size})

async def check_quota(store: IdentityStore, matrix_db: Optional[MatrixDB]) -> Dict[str, int]:
    """
    Refreshes the media usage of every homeserver user.
    A user whose usage cannot be saved is skipped with a warning.
    """
    if matrix_db is None:
        raise ConfigurationError("Missing matrix database configuration")

    users = await matrix_db.get_user_names()
    usage: Dict[str, int] = {}

    async def _check(user_id: str) -> None:
        try:
            size = await get_user_usage(matrix_db, user_id)
            await save_user_usage(store, user_id, size)
            usage[user_id] = size
        except Exception as e:
            logger.warning(f"Failed to save user usage for {user_id}: {e}")

    await asyncio.gather(*[_check(u) for u in users])
    logger.info(f"Quota check complete for {len(usage)}/{len(users)} users")
    return usage
