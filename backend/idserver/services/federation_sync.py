"""
Publishes the local users' hashes to remote identity peers.

Each peer hashes lookups under its own pepper, so every cycle asks each peer
for its algorithm and peppers (`hash_details`), recomputes the export set
under each of them and pushes it back (`lookups`). Every peer, and every
(peer, pepper) push, succeeds or fails on its own: a failure is logged with
the peer address and only removes that peer or push from the current cycle.
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from loguru import logger
from pydantic import ValidationError

from common.errors import PeerError
from common.utils import host_identifier
from idserver.core.crypto import Hash
from idserver.core.user_db import UserDB, DB_FIELDS_TO_HASH
from idserver.schemas import HashDetails, LookupsRequest, MatrixError
from idserver.services.active_filter import ActiveUserFilter, to_updatable_fields
from idserver.services.update_hash import UpdatableFields, hash_3pid, hashable_values
from infrastructure.monitoring import monitor

HASH_DETAILS_PATH = "/_matrix/identity/v2/hash_details"
LOOKUPS_PATH = "/_matrix/identity/v2/lookups"

class PushFormat(str, enum.Enum):
    # mappings: {host: ["hash", ...]}
    HASHES = "hashes"
    # mappings: {host: [{"hash": ..., "active": 1}, ...]}
    HASHES_WITH_ACTIVE = "hashes_with_active"

@dataclass
class PeerDescriptor:
    address: str
    algorithm: str
    peppers: List[str]

@dataclass
class PeerOutcome:
    peer: str
    stage: str
    pepper: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

@dataclass
class FederationSyncReport:
    peers: List[PeerDescriptor] = field(default_factory=list)
    outcomes: List[PeerOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[PeerOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def pushed(self) -> List[PeerOutcome]:
        return [o for o in self.outcomes if o.ok and o.stage == "lookups"]

def _error_of(body: Any) -> Optional[str]:
    """Message of a Matrix error body, or None when the body is not an error."""
    if not isinstance(body, dict) or "errcode" not in body:
        return None
    try:
        error = MatrixError.model_validate(body)
    except ValidationError:
        return str(body["errcode"])
    return error.error or error.errcode

class FederationSyncJob:
    def __init__(
        self,
        name: str,
        peers: List[str],
        user_db: UserDB,
        active_filter: ActiveUserFilter,
        client,
        server_name: str,
        base_url: str,
        hasher: Optional[Hash] = None,
        push_format: PushFormat = PushFormat.HASHES,
        host_formatter: Callable[[str], str] = host_identifier,
    ):
        self.name = name
        self.peers = list(peers)
        self.user_db = user_db
        self.active_filter = active_filter
        self.client = client
        self.server_name = server_name
        self.base_url = base_url
        self.hasher = hasher or Hash()
        self.push_format = push_format
        self.host_formatter = host_formatter

    def _log_prefix(self) -> str:
        return f"[Update {self.name} hashes]"

    @staticmethod
    def _url(peer: str, path: str) -> str:
        return f"https://{peer}{path}"

    async def fetch_details(self, peer: str) -> PeerDescriptor:
        try:
            response = await self.client.get(self._url(peer, HASH_DETAILS_PATH))
            body = response.json()
        except Exception as e:
            raise PeerError(peer, f"request to get pepper and algorithms failed: {e}")

        error = _error_of(body)
        if error is not None:
            raise PeerError(peer, f"error in hash_details response: {error}")
        if response.status_code >= 400:
            raise PeerError(peer, f"hash_details returned HTTP {response.status_code}")
        try:
            details = HashDetails.model_validate(body)
        except ValidationError as e:
            missing = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            raise PeerError(peer, f"did not provide valid {missing or 'hash details'}")

        algorithm = details.algorithms[0]
        if not self.hasher.supports(algorithm):
            raise PeerError(peer, f"unsupported algorithm {algorithm}")
        return PeerDescriptor(
            address=peer,
            algorithm=algorithm,
            peppers=[details.lookup_pepper, *(details.alt_lookup_peppers or [])],
        )

    async def export_set(self) -> UpdatableFields:
        """Active local users only; inactive users never leave this server."""
        rows = await self.user_db.get_all("users", [*DB_FIELDS_TO_HASH, "uid"])
        users = [u for u in await self.active_filter.filter(rows) if u.active == 1]
        return to_updatable_fields(users, self.server_name)

    def compute_hashes(self, data: UpdatableFields, algorithm: str, pepper: str) -> List[Any]:
        result = []
        for fields in data.values():
            for name, value in hashable_values(fields):
                digest = hash_3pid(self.hasher, algorithm, name, value, pepper)
                if self.push_format == PushFormat.HASHES_WITH_ACTIVE:
                    result.append({"hash": digest, "active": fields.active})
                else:
                    result.append(digest)
        return result

    async def push(self, descriptor: PeerDescriptor, pepper: str, hashes: List[Any]) -> PeerOutcome:
        outcome = PeerOutcome(peer=descriptor.address, stage="lookups", pepper=pepper)
        payload = LookupsRequest(
            algorithm=descriptor.algorithm,
            pepper=pepper,
            mappings={self.host_formatter(self.base_url): hashes},
        )
        try:
            response = await self.client.post(
                self._url(descriptor.address, LOOKUPS_PATH),
                json=payload.model_dump(),
            )
        except Exception as e:
            outcome.error = f"request to post updated hashes failed: {e}"
            return outcome
        try:
            body = response.json()
        except Exception as e:
            outcome.error = f"unable to parse lookups response: {e}"
            return outcome

        error = _error_of(body)
        if error is not None:
            outcome.error = f"error in lookups response: {error}"
        elif response.status_code >= 400:
            outcome.error = f"lookups returned HTTP {response.status_code}"
        return outcome

    async def run(self) -> FederationSyncReport:
        report = FederationSyncReport()
        if not self.peers:
            return report

        details = await asyncio.gather(*[self.fetch_details(p) for p in self.peers], return_exceptions=True)
        for peer, result in zip(self.peers, details):
            if isinstance(result, BaseException):
                reason = result.reason if isinstance(result, PeerError) else str(result)
                logger.error(f"{self._log_prefix()} {peer} excluded from this cycle. Reason: {reason}")
                monitor.track_peer_failure("hash_details")
                report.outcomes.append(PeerOutcome(peer=peer, stage="hash_details", error=reason))
            else:
                report.peers.append(result)

        if not report.peers:
            return report

        data = await self.export_set()
        pushes = []
        for descriptor in report.peers:
            for pepper in descriptor.peppers:
                hashes = self.compute_hashes(data, descriptor.algorithm, pepper)
                pushes.append(self.push(descriptor, pepper, hashes))

        for outcome in await asyncio.gather(*pushes):
            monitor.track_push(outcome.ok)
            if outcome.ok:
                logger.debug(f"{self._log_prefix()} Hashes pushed to {outcome.peer}")
            else:
                logger.error(f"{self._log_prefix()} Push to {outcome.peer} failed. Reason: {outcome.error}")
                monitor.track_peer_failure("lookups")
            report.outcomes.append(outcome)
        return report
