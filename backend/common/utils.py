import re
import time
from urllib.parse import urlparse

_MATRIX_ID = re.compile(r"^@(.*?):.*$")

def to_matrix_id(uid: str, server_name: str) -> str:
    """Builds the matrix address `@uid:server_name` of a local user."""
    return f"@{uid}:{server_name}"

def uid_from_matrix_id(address: str) -> str:
    """Returns the localpart of a matrix address, or the input if it is not one."""
    return _MATRIX_ID.sub(r"\1", address)

def host_identifier(base_url: str, with_port: bool = True) -> str:
    """Host key under which peers file our hashes, e.g. `example.com:443`."""
    parsed = urlparse(base_url)
    hostname = parsed.hostname or base_url
    if not with_port:
        return hostname
    return f"{hostname}:{parsed.port or 443}"

def epoch() -> int:
    """Current time in milliseconds."""
    return int(time.time() * 1000)
