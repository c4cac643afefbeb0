from typing import Awaitable, Callable, Optional
from asgiref.sync import async_to_sync
from celery.signals import setup_logging, worker_ready
from loguru import logger

from idserver.celery_app import celery
from idserver.core.storage import IdentityStore
from idserver.core.user_db import MatrixDB, UserDB
from idserver.services.active_filter import ActiveUserFilter
from idserver.services.check_quota import check_quota
from idserver.services.federation_sync import FederationSyncJob, PushFormat
from idserver.services.pepper_rotation import PepperRotationJob
from idserver.services.update_hash import HashComputationPool
from idserver.services.update_users import IncrementalUserSyncJob
from infrastructure import database
from infrastructure.config import settings
from infrastructure.http_client import http_client
from infrastructure.logging import configure_logging

# --- Wiring ---
def get_store() -> IdentityStore:
    return IdentityStore(database.AsyncSessionLocal)

def get_user_db() -> UserDB:
    return UserDB(database.UserDBSessionLocal)

def get_matrix_db() -> Optional[MatrixDB]:
    if database.MatrixDBSessionLocal is None:
        return None
    return MatrixDB(database.MatrixDBSessionLocal)

def get_active_filter() -> ActiveUserFilter:
    return ActiveUserFilter(get_matrix_db(), federated=settings.has_federated_peers)

def build_rotation_job() -> PepperRotationJob:
    store = get_store()
    return PepperRotationJob(
        store,
        get_user_db(),
        get_active_filter(),
        settings.SERVER_NAME,
        pool=HashComputationPool(store, jobs=settings.HASH_JOBS),
        pepper_length=settings.PEPPER_LENGTH,
    )

def build_user_sync_job() -> IncrementalUserSyncJob:
    store = get_store()
    return IncrementalUserSyncJob(
        store,
        get_user_db(),
        get_active_filter(),
        settings.SERVER_NAME,
        pool=HashComputationPool(store, jobs=settings.HASH_JOBS),
    )

def build_federation_job(name: str, peers, client) -> FederationSyncJob:
    return FederationSyncJob(
        name,
        peers,
        get_user_db(),
        get_active_filter(),
        client,
        settings.SERVER_NAME,
        settings.BASE_URL,
        push_format=PushFormat.HASHES,
    )

async def _dispose_engines() -> None:
    # Each task runs in its own event loop; pooled connections must not outlive it
    await database.engine.dispose()
    await database.userdb_engine.dispose()
    if database.MatrixDBSessionLocal is not None:
        await database.matrix_engine.dispose()

async def _run_job(name: str, job: Callable[[], Awaitable]):
    try:
        return await job()
    except Exception as e:
        logger.error(f"{name} failed: {e}")
        raise
    finally:
        await _dispose_engines()

# --- Jobs ---
async def _rotate_pepper_async():
    result = await build_rotation_job().run()
    return {"status": "success", "hashes": result.batch.stored, "retired": result.retired}

async def _update_users_async():
    report = await build_user_sync_job().run()
    return {
        "new": len(report.new),
        "activated": len(report.activated),
        "deactivated": len(report.deactivated),
        "errors": len(report.errors),
    }

async def _update_peers_async(name: str, peers):
    http_client.start()
    try:
        report = await build_federation_job(name, peers, http_client.client).run()
    finally:
        await http_client.stop()
    return {"peers": len(report.peers), "pushed": len(report.pushed), "failed": len(report.failures)}

async def _check_quota_async():
    usage = await check_quota(get_store(), get_matrix_db())
    return {"users": len(usage)}

async def _bootstrap_async() -> bool:
    """Creates the identity tables and fills an empty hash catalog once."""
    store = get_store()
    await store.create_tables(database.engine)
    if await store.get_count("hashes", "hash") > 0:
        return False
    logger.info("Hash catalog is empty, running initial pepper rotation")
    await build_rotation_job().run()
    return True

# --- Celery entry points ---
@celery.task(name="hashes.rotate_pepper")
def rotate_pepper_task():
    return async_to_sync(_run_job)("Pepper update", _rotate_pepper_async)

@celery.task(name="hashes.update_users")
def update_users_task():
    return async_to_sync(_run_job)("Users update", _update_users_async)

@celery.task(name="hashes.update_federation_hashes")
def update_federation_hashes_task():
    return async_to_sync(_run_job)(
        "Federation servers hashes update",
        lambda: _update_peers_async("federation server", settings.FEDERATION_SERVERS),
    )

@celery.task(name="hashes.update_federated_identity_hashes")
def update_federated_identity_hashes_task():
    return async_to_sync(_run_job)(
        "Federated identity services hashes update",
        lambda: _update_peers_async("federated identity service", settings.FEDERATED_IDENTITY_SERVICES),
    )

@celery.task(name="hashes.check_quota")
def check_quota_task():
    return async_to_sync(_run_job)("User quota check", _check_quota_async)

@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()

@worker_ready.connect
def _bootstrap_catalog(**kwargs):
    if not settings.CRON_SERVICE:
        return
    async_to_sync(_run_job)("Initial hashes update", _bootstrap_async)
