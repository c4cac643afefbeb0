from prometheus_client import Counter
from loguru import logger

# 1. Hash catalog
hashes_stored = Counter("identity_hashes_stored_total", "Hash records written to the catalog", ["mode"])
hash_failures = Counter("identity_hash_failures_total", "Hash records that could not be written", ["mode"])

# 2. Jobs
pepper_rotations = Counter("identity_pepper_rotations_total", "Pepper rotations by outcome", ["status"])
user_history_entries = Counter("identity_user_history_entries_total", "User history entries appended", ["active"])

# 3. Federation
federation_pushes = Counter("identity_federation_pushes_total", "Hash pushes to federation peers", ["status"])
peer_failures = Counter("identity_peer_failures_total", "Federation peer failures", ["stage"])

class HashMonitor:
    @staticmethod
    def track_batch(mode: str, stored: int, failed: int):
        hashes_stored.labels(mode=mode).inc(stored)
        if failed:
            hash_failures.labels(mode=mode).inc(failed)
        logger.debug(f"Hash batch ({mode}): {stored} stored, {failed} failed")

    @staticmethod
    def track_rotation(status: str):
        pepper_rotations.labels(status=status).inc()

    @staticmethod
    def track_history(active: int):
        user_history_entries.labels(active=str(active)).inc()

    @staticmethod
    def track_push(ok: bool):
        federation_pushes.labels(status="success" if ok else "failed").inc()

    @staticmethod
    def track_peer_failure(stage: str):
        peer_failures.labels(stage=stage).inc()

monitor = HashMonitor()
