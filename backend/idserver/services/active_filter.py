from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set
from loguru import logger

from common.utils import to_matrix_id
from idserver.core.user_db import MatrixDB
from idserver.services.update_hash import UpdatableFields, ValueField

@dataclass
class LocalUser:
    uid: str
    mail: Optional[str] = None
    mobile: Optional[str] = None
    active: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LocalUser":
        return cls(uid=str(row["uid"]), mail=row.get("mail"), mobile=row.get("mobile"))

class ActiveUserFilter:
    """
    Decides which local users exist on the homeserver.

    Without a homeserver view every local user is active. With one, only users
    listed in it are active; when identifiers can leave this server through a
    federated identity service (`federated=True`), users missing from the view
    are dropped altogether instead of being kept as inactive.
    """

    def __init__(self, matrix_db: Optional[MatrixDB] = None, federated: bool = False):
        self.matrix_db = matrix_db
        self.federated = federated

    async def homeserver_uids(self) -> Optional[Set[str]]:
        """Localparts known to the homeserver, or None when no view is configured."""
        if self.matrix_db is None:
            return None
        try:
            return set(await self.matrix_db.get_local_uids())
        except Exception as e:
            # Nobody is confirmed active when the view cannot be read
            logger.error(f"Unable to query Matrix DB: {e}")
            return set()

    def is_active(self, uid: str, uids: Optional[Set[str]]) -> int:
        return 1 if uids is None or uid in uids else 0

    def is_publishable(self, uid: str, uids: Optional[Set[str]]) -> bool:
        return not (self.federated and not self.is_active(uid, uids))

    def annotate(self, rows: Iterable[Dict[str, Any]], uids: Optional[Set[str]]) -> List[LocalUser]:
        users = []
        for row in rows:
            user = LocalUser.from_row(row)
            if not self.is_publishable(user.uid, uids):
                continue
            user.active = self.is_active(user.uid, uids)
            users.append(user)
        return users

    async def filter(self, rows: Iterable[Dict[str, Any]]) -> List[LocalUser]:
        return self.annotate(rows, await self.homeserver_uids())

def to_updatable_fields(users: Iterable[LocalUser], server_name: str) -> UpdatableFields:
    return {
        to_matrix_id(user.uid, server_name): ValueField(active=user.active, email=user.mail, phone=user.mobile)
        for user in users
    }
