from sqlalchemy import Column, String, Integer, BigInteger, Text, Table, MetaData
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Pepper slot names in the keys table
PEPPER_SLOT = "pepper"
PREVIOUS_PEPPER_SLOT = "previousPepper"

class Key(Base):
    __tablename__ = "keys"

    name = Column(String(32), primary_key=True)
    data = Column(Text, nullable=True)

class HashRecord(Base):
    __tablename__ = "hashes"

    hash = Column(String(128), primary_key=True)
    pepper = Column(String(64), primary_key=True, index=True)
    type = Column(String(8), nullable=False) # email or msisdn
    value = Column(Text, nullable=False, index=True) # owning matrix address
    active = Column(Integer, nullable=False, default=1)

class UserHistory(Base):
    __tablename__ = "userHistory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(Text, nullable=False, index=True)
    timestamp = Column(BigInteger, nullable=False, index=True) # epoch ms
    active = Column(Integer, nullable=False)

class UserQuota(Base):
    __tablename__ = "userQuotas"

    user_id = Column(String(255), primary_key=True)
    size = Column(BigInteger, nullable=False, default=0)

# Rows inserted when the identity database is created
INITIAL_VALUES = {
    "keys": [
        {"name": PEPPER_SLOT, "data": ""},
        {"name": PREVIOUS_PEPPER_SLOT, "data": ""},
    ],
}

# --- External, read-only schemas ---

# Local user directory
userdb_metadata = MetaData()
users_table = Table(
    "users",
    userdb_metadata,
    Column("uid", String(255), primary_key=True),
    Column("mail", String(255)),
    Column("mobile", String(64)),
)

# Homeserver view (subset of the homeserver schema we read)
matrixdb_metadata = MetaData()
matrix_users_table = Table(
    "users",
    matrixdb_metadata,
    Column("name", Text, primary_key=True),
)
local_media_repository_table = Table(
    "local_media_repository",
    matrixdb_metadata,
    Column("media_id", Text, primary_key=True),
    Column("media_length", BigInteger),
    Column("user_id", Text),
)
