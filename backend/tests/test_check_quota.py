import pytest
from unittest.mock import AsyncMock, patch

from common.errors import ConfigurationError
from idserver.models import local_media_repository_table
from idserver.services.check_quota import check_quota

@pytest.mark.asyncio
async def test_usage_saved_per_user(store, matrix_db, matrixdb_engine, add_matrix_users):
    await add_matrix_users("dwho", "rtyler")
    async with matrixdb_engine.begin() as conn:
        await conn.execute(local_media_repository_table.insert(), [
            {"media_id": "m1", "media_length": 100, "user_id": "@dwho:company.com"},
            {"media_id": "m2", "media_length": 250, "user_id": "@dwho:company.com"},
        ])
    await store.insert("userQuotas", {"user_id": "@dwho:company.com", "size": 1})

    usage = await check_quota(store, matrix_db)

    assert usage == {"@dwho:company.com": 350, "@rtyler:company.com": 0}
    rows = await store.get_all("userQuotas", ["user_id", "size"])
    assert sorted((r["user_id"], r["size"]) for r in rows) == [("@dwho:company.com", 350), ("@rtyler:company.com", 0)]

@pytest.mark.asyncio
async def test_failed_user_is_skipped(store, matrix_db, add_matrix_users):
    await add_matrix_users("dwho", "rtyler")
    original_insert = store.insert

    async def failing_insert(table, row):
        if row["user_id"] == "@dwho:company.com":
            raise Exception("DB Error")
        await original_insert(table, row)

    with patch.object(store, "insert", side_effect=failing_insert):
        usage = await check_quota(store, matrix_db)
    assert usage == {"@rtyler:company.com": 0}

@pytest.mark.asyncio
async def test_requires_homeserver_view():
    with pytest.raises(ConfigurationError):
        await check_quota(AsyncMock(), None)
