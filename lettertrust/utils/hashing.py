"""Hash algorithm lookup and digest helpers."""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes

from lettertrust.errors import ConfigError

_ALGORITHMS: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

DEFAULT_HASH_ALGORITHM = "sha256"


def supported_hash_algorithms() -> list[str]:
    """Return the names accepted by :func:`parse_hash_algorithm`."""
    return sorted(_ALGORITHMS)


def parse_hash_algorithm(name: str) -> str:
    """Normalize a hash algorithm name.

    Args:
        name: Algorithm name such as ``sha256`` or ``SHA-256``

    Returns:
        Canonical lower-case name

    Raises:
        ConfigError: If the algorithm is unknown
    """
    canonical = name.strip().lower().replace("-", "")
    if canonical not in _ALGORITHMS:
        raise ConfigError(
            f"unknown hash algorithm '{name}' "
            f"(supported: {', '.join(supported_hash_algorithms())})"
        )
    return canonical


def get_hash_algorithm(name: str) -> hashes.HashAlgorithm:
    """Return a fresh ``cryptography`` hash instance for ``name``."""
    return _ALGORITHMS[parse_hash_algorithm(name)]()


def compute_digest(content: bytes, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Compute the hexadecimal digest of ``content``.

    Args:
        content: Bytes to hash
        algorithm: Hash algorithm name

    Returns:
        Lower-case hexadecimal digest string
    """
    digest = hashes.Hash(get_hash_algorithm(algorithm))
    digest.update(content)
    return digest.finalize().hex()
