import os

# Settings are read at import time; keep them away from real services
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("USERDB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SERVER_NAME", "company.com")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from idserver.core.storage import IdentityStore
from idserver.core.user_db import UserDB, MatrixDB
from idserver.models import userdb_metadata, matrixdb_metadata, users_table, matrix_users_table

SERVER_NAME = "company.com"

def _engine(path):
    # File databases: concurrent sessions each get their own connection
    return create_async_engine(f"sqlite+aiosqlite:///{path}")

def _sessions(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@pytest.fixture
async def identity_engine(tmp_path):
    engine = _engine(tmp_path / "identity.db")
    yield engine
    await engine.dispose()

@pytest.fixture
async def store(identity_engine):
    store = IdentityStore(_sessions(identity_engine))
    await store.create_tables(identity_engine)
    return store

@pytest.fixture
async def userdb_engine(tmp_path):
    engine = _engine(tmp_path / "userdb.db")
    async with engine.begin() as conn:
        await conn.run_sync(userdb_metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def user_db(userdb_engine):
    return UserDB(_sessions(userdb_engine))

@pytest.fixture
def add_users(userdb_engine):
    async def _add(*rows):
        async with userdb_engine.begin() as conn:
            await conn.execute(users_table.insert(), list(rows))
    return _add

@pytest.fixture
def remove_user(userdb_engine):
    async def _remove(uid):
        async with userdb_engine.begin() as conn:
            await conn.execute(users_table.delete().where(users_table.c.uid == uid))
    return _remove

@pytest.fixture
async def matrixdb_engine(tmp_path):
    engine = _engine(tmp_path / "matrix.db")
    async with engine.begin() as conn:
        await conn.run_sync(matrixdb_metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def matrix_db(matrixdb_engine):
    return MatrixDB(_sessions(matrixdb_engine))

@pytest.fixture
def add_matrix_users(matrixdb_engine):
    async def _add(*uids):
        async with matrixdb_engine.begin() as conn:
            await conn.execute(matrix_users_table.insert(), [{"name": f"@{uid}:{SERVER_NAME}"} for uid in uids])
    return _add
