import base64
import hashlib
import secrets
import string

# Algorithms used to fill the local hash catalog
SUPPORTED_HASHES = ("sha256",)

_ALPHABET = string.ascii_letters + string.digits

def random_string(length: int) -> str:
    """Alphanumeric secret of the given length."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))

def _unpadded_b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")

class Hash:
    """
    Lookup hashes as defined by the Matrix identity service API:
    unpadded URL-safe base64 of the digest of the space-joined parts.
    """
    algorithms = {
        "sha256": hashlib.sha256,
        "sha512": hashlib.sha512,
    }

    async def ready(self) -> None:
        # hashlib needs no initialization; kept so callers can await readiness
        return None

    def supports(self, algorithm: str) -> bool:
        return algorithm in self.algorithms

    def digest(self, algorithm: str, *parts: str) -> str:
        try:
            fn = self.algorithms[algorithm]
        except KeyError:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        return _unpadded_b64(fn(" ".join(parts).encode("utf-8")).digest())

    def sha256(self, *parts: str) -> str:
        return self.digest("sha256", *parts)

    def sha512(self, *parts: str) -> str:
        return self.digest("sha512", *parts)

    @staticmethod
    def supported_algorithms() -> list:
        return list(SUPPORTED_HASHES)
