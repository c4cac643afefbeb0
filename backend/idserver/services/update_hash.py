import asyncio
import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from loguru import logger

from common.errors import HashBatchError
from idserver.core.crypto import Hash, SUPPORTED_HASHES
from idserver.core.pepper_store import PepperStore
from idserver.core.storage import IdentityStore
from infrastructure.monitoring import monitor

FIELDS_TO_HASH = ["phone", "email"]

# Default number of hash inserts in flight
DEFAULT_JOBS = 5

@dataclass
class ValueField:
    active: int = 1
    email: Optional[str] = None
    phone: Optional[str] = None

# matrix address -> 3PIDs and active flag
UpdatableFields = Dict[str, ValueField]

class FailurePolicy(str, enum.Enum):
    # Any failed unit rejects the batch
    STRICT = "strict"
    # Failed units are logged; the batch only fails if nothing was stored
    BEST_EFFORT = "best_effort"

@dataclass
class UnitResult:
    matrix_address: str
    algorithm: str
    field: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

@dataclass
class BatchResult:
    pepper: Optional[str] = None
    results: List[UnitResult] = field(default_factory=list)

    @property
    def stored(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failures(self) -> List[UnitResult]:
        return [r for r in self.results if not r.ok]

def normalize(field_name: str, value: str):
    """Returns the (label, value) pair actually hashed for a 3PID field."""
    if field_name == "phone":
        value = "".join(value.split())
        return "msisdn", value[1:] if value.startswith("+") else value
    return field_name, value

def hash_3pid(hasher: Hash, algorithm: str, field_name: str, value: str, pepper: str) -> str:
    label, value = normalize(field_name, value)
    return hasher.digest(algorithm, value, label, pepper)

def hashable_values(fields: ValueField):
    """Yields (field, value) for every non-empty 3PID of a user."""
    for name in FIELDS_TO_HASH:
        v = getattr(fields, name)
        if v is not None and len(str(v)) > 0:
            yield name, str(v)

class HashComputationPool:
    """
    Computes every (field x algorithm) hash of a batch and stores one row per
    combination, with at most `jobs` inserts in flight.
    """

    def __init__(
        self,
        store: IdentityStore,
        peppers: Optional[PepperStore] = None,
        hasher: Optional[Hash] = None,
        jobs: int = DEFAULT_JOBS,
        algorithms=SUPPORTED_HASHES,
    ):
        self.store = store
        self.peppers = peppers or PepperStore(store)
        self.hasher = hasher or Hash()
        self.jobs = jobs
        self.algorithms = list(algorithms)

    async def run(
        self,
        data: UpdatableFields,
        pepper: Optional[str] = None,
        policy: FailurePolicy = FailurePolicy.STRICT,
    ) -> BatchResult:
        await self.hasher.ready()
        batch = BatchResult(pepper=pepper or None)
        sem = asyncio.Semaphore(self.jobs)
        pepper_read: Optional[asyncio.Future] = None

        async def current_pepper() -> str:
            # Read on first use; every unit awaits the same read
            nonlocal pepper_read
            if pepper_read is None:
                pepper_read = asyncio.ensure_future(self.peppers.current())
            return await pepper_read

        async def update(matrix_address: str, algorithm: str, field_name: str, value: str, active: int) -> UnitResult:
            async with sem:
                unit = UnitResult(matrix_address, algorithm, field_name)
                try:
                    if not batch.pepper:
                        batch.pepper = await current_pepper()
                    label, _ = normalize(field_name, value)
                    await self.store.insert("hashes", {
                        "hash": hash_3pid(self.hasher, algorithm, field_name, value, batch.pepper),
                        "pepper": batch.pepper,
                        "type": label,
                        "value": matrix_address,
                        "active": active,
                    })
                except Exception as e:
                    unit.error = e
                return unit

        params = [
            (matrix_address, algorithm, name, value, fields.active)
            for matrix_address, fields in data.items()
            for name, value in hashable_values(fields)
            for algorithm in self.algorithms
        ]
        if not params:
            return batch

        batch.results = list(await asyncio.gather(*[update(*p) for p in params]))
        failures = batch.failures
        monitor.track_batch(policy.value, batch.stored, len(failures))

        for unit in failures:
            logger.error(f"Unable to store {unit.field} hash ({unit.algorithm}) for {unit.matrix_address}: {unit.error}")

        if failures and (policy == FailurePolicy.STRICT or batch.stored == 0):
            raise HashBatchError(failures, total=len(params))
        return batch
