"""Cryptographic identity and trust material."""

from lettertrust.crypto.signature import (
    SignatureManager,
    fingerprint,
    load_certificate_data,
    normalize_fingerprint,
)

__all__ = [
    "SignatureManager",
    "fingerprint",
    "load_certificate_data",
    "normalize_fingerprint",
]
