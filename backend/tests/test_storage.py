import pytest
from unittest.mock import AsyncMock

from common.errors import PepperNotFoundError, ServiceError
from idserver.core.pepper_store import PepperStore, PepperSlots

@pytest.mark.asyncio
async def test_create_tables_seeds_pepper_slots(store, identity_engine):
    rows = await store.get_all("keys", ["name", "data"])
    assert sorted(r["name"] for r in rows) == ["pepper", "previousPepper"]
    # Running it again keeps a single row per slot
    await store.create_tables(identity_engine)
    assert await store.get_count("keys", "name") == 2

@pytest.mark.asyncio
async def test_insert_get_update_delete(store):
    await store.insert("hashes", {"hash": "h1", "pepper": "p1", "type": "email", "value": "@a:company.com", "active": 1})
    await store.insert("hashes", {"hash": "h2", "pepper": "p2", "type": "msisdn", "value": "@a:company.com", "active": 1})
    await store.insert("hashes", {"hash": "h3", "pepper": "p2", "type": "email", "value": "@b:company.com", "active": 1})

    assert len(await store.get("hashes", ["hash"], {"value": "@a:company.com"})) == 2
    assert len(await store.get("hashes", ["hash"], {"hash": ["h1", "h3"]})) == 2

    assert await store.update("hashes", {"active": 0}, "value", "@a:company.com") == 2
    rows = await store.get("hashes", ["active"], {"value": "@a:company.com"})
    assert all(r["active"] == 0 for r in rows)

    assert await store.delete_where("hashes", "pepper", "p2") == 2
    assert await store.get_count("hashes", "hash") == 1

@pytest.mark.asyncio
async def test_get_higher_than(store):
    for ts in (100, 200, 300):
        await store.insert("userHistory", {"address": f"@u{ts}:company.com", "timestamp": ts, "active": 1})
    rows = await store.get_higher_than("userHistory", ["address"], {"timestamp": 150})
    assert sorted(r["address"] for r in rows) == ["@u200:company.com", "@u300:company.com"]

@pytest.mark.asyncio
async def test_unknown_table(store):
    with pytest.raises(ServiceError):
        await store.get_all("nope", None)

@pytest.mark.asyncio
async def test_duplicate_insert_is_service_error(store):
    row = {"hash": "h1", "pepper": "p1", "type": "email", "value": "@a:company.com", "active": 1}
    await store.insert("hashes", row)
    with pytest.raises(ServiceError):
        await store.insert("hashes", row)

@pytest.mark.asyncio
async def test_pepper_slots(store):
    peppers = PepperStore(store)
    assert await peppers.read() == PepperSlots(current="", previous=None)

    await peppers.publish("first", expected="")
    await peppers.shift_to_previous("first")
    await peppers.publish("second", expected="first")
    assert await peppers.read() == PepperSlots(current="second", previous="first")

@pytest.mark.asyncio
async def test_publish_is_compare_and_swap(store):
    peppers = PepperStore(store)
    await peppers.publish("first", expected="")
    with pytest.raises(ServiceError):
        await peppers.publish("other", expected="stale")
    assert await peppers.current() == "first"

@pytest.mark.asyncio
async def test_retire_previous_deletes_its_hashes(store):
    peppers = PepperStore(store)
    await peppers.shift_to_previous("old")
    await store.insert("hashes", {"hash": "h1", "pepper": "old", "type": "email", "value": "@a:company.com", "active": 1})
    await store.insert("hashes", {"hash": "h2", "pepper": "cur", "type": "email", "value": "@a:company.com", "active": 1})

    assert await peppers.retire_previous() == 1
    rows = await store.get_all("hashes", ["pepper"])
    assert [r["pepper"] for r in rows] == ["cur"]

@pytest.mark.asyncio
async def test_retire_without_previous_is_noop():
    store = AsyncMock()
    store.get.return_value = [{"data": ""}]
    assert await PepperStore(store).retire_previous() == 0
    store.delete_where.assert_not_called()

@pytest.mark.asyncio
async def test_missing_current_pepper():
    store = AsyncMock()
    store.get.return_value = []
    with pytest.raises(PepperNotFoundError):
        await PepperStore(store).current()

@pytest.mark.asyncio
async def test_unpublished_current_pepper_is_missing(store):
    # Seeded slot, before the first rotation
    with pytest.raises(PepperNotFoundError):
        await PepperStore(store).current()
    assert (await PepperStore(store).read()).current == ""
