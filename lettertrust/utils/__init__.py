"""Utility modules for common operations."""

from lettertrust.utils.hashing import (
    compute_digest,
    get_hash_algorithm,
    parse_hash_algorithm,
    supported_hash_algorithms,
)
from lettertrust.utils.offline import OfflineModeGate

__all__ = [
    "OfflineModeGate",
    "compute_digest",
    "get_hash_algorithm",
    "parse_hash_algorithm",
    "supported_hash_algorithms",
]
