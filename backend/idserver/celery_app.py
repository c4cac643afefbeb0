from celery import Celery

from infrastructure.config import settings, parse_cron

celery = Celery(
    "identity_hash_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "workers.hash_tasks",
    ]
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="celery",
)

def build_beat_schedule(conf=settings) -> dict:
    """Periodic jobs enabled by the configuration."""
    if not conf.CRON_SERVICE:
        return {}

    schedule = {
        "rotate-pepper": {
            "task": "hashes.rotate_pepper",
            "schedule": parse_cron(conf.PEPPER_CRON),
        },
        "update-users": {
            "task": "hashes.update_users",
            "schedule": parse_cron(conf.UPDATE_USERS_CRON),
        },
    }
    if conf.matrix_db_configured:
        schedule["check-quota"] = {
            "task": "hashes.check_quota",
            "schedule": parse_cron(conf.CHECK_QUOTA_CRON),
        }
    if conf.FEDERATION_SERVERS:
        schedule["update-federation-hashes"] = {
            "task": "hashes.update_federation_hashes",
            "schedule": parse_cron(conf.UPDATE_FEDERATION_HASHES_CRON),
        }
    if conf.FEDERATED_IDENTITY_SERVICES:
        schedule["update-federated-identity-hashes"] = {
            "task": "hashes.update_federated_identity_hashes",
            "schedule": parse_cron(conf.UPDATE_FEDERATION_HASHES_CRON),
        }
    return schedule

celery.conf.beat_schedule = build_beat_schedule()
