from typing import Optional, Any, Dict, List

class IdentityServerError(Exception):
    """Base exception class for the identity hash subsystem."""
    def __init__(self, message: str, code: str = "internal_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

class ConfigurationError(IdentityServerError):
    """Raised when a job needs a collaborator that is not configured."""
    def __init__(self, message: str):
        super().__init__(message, code="configuration_error")

class ServiceError(IdentityServerError):
    """Raised when a backing service fails (e.g. storage, homeserver view)."""
    def __init__(self, message: str, service_name: str, **kwargs):
        super().__init__(message, code=f"{service_name}_error", details=kwargs)

class PepperNotFoundError(IdentityServerError):
    """Raised when a required pepper slot is missing. Fatal for the current cycle."""
    def __init__(self, slot: str):
        super().__init__(f"No {slot} pepper found", code="pepper_not_found", details={"slot": slot})
        self.slot = slot

class HashBatchError(IdentityServerError):
    """Raised when a strict hash batch has at least one failed unit."""
    def __init__(self, failures: List[Any], total: int):
        super().__init__(
            f"{len(failures)} of {total} hash updates failed",
            code="hash_batch_failed",
            details={"failed": len(failures), "total": total},
        )
        self.failures = failures

class PeerError(IdentityServerError):
    """A failure scoped to a single federation peer."""
    def __init__(self, peer: str, reason: str):
        super().__init__(f"{peer}: {reason}", code="peer_error", details={"peer": peer})
        self.peer = peer
        self.reason = reason
