from typing import List
from sqlalchemy.ext.asyncio import async_sessionmaker

from common.utils import uid_from_matrix_id
from idserver.core.storage import SQLDatabase
from idserver.models import userdb_metadata, matrixdb_metadata

# Directory columns holding the 3PIDs, in the order they are hashed
DB_FIELDS_TO_HASH = ["mobile", "mail"]

class UserDB(SQLDatabase):
    """Local user directory: rows of {uid, mail, mobile}."""
    service_name = "userdb"

    def __init__(self, session_factory: async_sessionmaker):
        super().__init__(session_factory, userdb_metadata)


class MatrixDB(SQLDatabase):
    """Read-only view onto the homeserver's own database."""
    service_name = "matrixdb"

    def __init__(self, session_factory: async_sessionmaker):
        super().__init__(session_factory, matrixdb_metadata)

    async def get_user_names(self) -> List[str]:
        """Full matrix ids (`@uid:domain`) of every homeserver account."""
        rows = await self.get_all("users", ["name"])
        return [row["name"] for row in rows]

    async def get_local_uids(self) -> List[str]:
        return [uid_from_matrix_id(name) for name in await self.get_user_names()]
