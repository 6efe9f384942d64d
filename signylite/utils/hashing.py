"""
Content fingerprints: SHA-256 over raw document bytes.
"""
import hashlib
from typing import Union

FINGERPRINT_ALGORITHM = "SHA-256"


def compute_bytes_hash(data: Union[bytes, bytearray, memoryview]) -> str:
    """Compute SHA-256 hash of bytes."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"compute_bytes_hash expects bytes, got {type(data).__name__}")
    return hashlib.sha256(data).hexdigest()


def short_fingerprint(digest: str, length: int = 8) -> str:
    """Prefix of a hex digest, for log correlation."""
    if not digest:
        return "none"
    return digest[:length]
