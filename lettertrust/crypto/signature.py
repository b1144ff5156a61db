"""Signing identity and trusted verification material.

``SignatureManager`` holds at most one signing identity (certificate plus
private key) and one set of trusted verification material (pinned public keys
and/or a CA/CRL bundle). It performs the primitive sign/verify operations but
makes no trust-policy decisions of its own.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from lettertrust.errors import (
    CryptoError,
    FormatError,
    KeyDecryptError,
    KeyMismatchError,
    LoadError,
)
from lettertrust.utils.hashing import get_hash_algorithm

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(
    rb"-----BEGIN (?P<label>[A-Z0-9 ]+)-----\r?\n.*?-----END (?P=label)-----",
    re.DOTALL,
)
_ENCRYPTED_MARKERS = (b"BEGIN ENCRYPTED PRIVATE KEY", b"Proc-Type: 4,ENCRYPTED")
_FINGERPRINT_HEX = re.compile(r"[0-9A-F]{40}")


def fingerprint(certificate: x509.Certificate) -> str:
    """Return the SHA-1 fingerprint of ``certificate`` as ``AB:CD:...``."""
    raw = certificate.fingerprint(hashes.SHA1())
    return ":".join(f"{byte:02X}" for byte in raw)


def normalize_fingerprint(text: str) -> str:
    """Normalize a textual fingerprint to upper-case, colon-separated form.

    Raises:
        ValueError: If ``text`` is not a 20-byte hexadecimal fingerprint
    """
    compact = text.strip().replace(":", "").upper()
    if not _FINGERPRINT_HEX.fullmatch(compact):
        raise ValueError(f"not a certificate fingerprint: '{text.strip()}'")
    return ":".join(compact[i : i + 2] for i in range(0, len(compact), 2))


def load_certificate_data(data: bytes) -> x509.Certificate:
    """Parse a PEM or DER encoded certificate.

    Raises:
        FormatError: If ``data`` is not a certificate
    """
    try:
        if b"-----BEGIN" in data:
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        raise FormatError(f"invalid certificate: {exc}") from exc


def _read_bytes(path: Path, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise LoadError(f"cannot read {what} {path}: {exc.strerror or exc}") from exc


class SignatureManager:
    """Per-flow holder of one signing identity and one set of trust material.

    Instances must not be shared between verification flows that need
    different trusted material; create one manager per repository instead.
    """

    def __init__(self) -> None:
        self._certificate: x509.Certificate | None = None
        self._private_key: rsa.RSAPrivateKey | None = None
        self._public_keys: list[rsa.RSAPublicKey] = []
        self._ca_certificates: list[x509.Certificate] = []
        self._crls: list[x509.CertificateRevocationList] = []
        self._last_error = ""

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    @property
    def last_error(self) -> str:
        """Human-readable description of the most recent failure."""
        return self._last_error

    def _record(self, message: str) -> str:
        self._last_error = message
        logger.debug("signature manager: %s", message)
        return message

    # ------------------------------------------------------------------ #
    # Signing identity
    # ------------------------------------------------------------------ #

    @property
    def certificate(self) -> x509.Certificate | None:
        return self._certificate

    def has_identity(self) -> bool:
        return self._certificate is not None and self._private_key is not None

    def load_certificate(self, path: Path) -> x509.Certificate:
        """Load the signing certificate from ``path``.

        Raises:
            LoadError: If the file cannot be read
            FormatError: If the file is not a certificate
        """
        try:
            return self.load_certificate_bytes(_read_bytes(path, "certificate"))
        except LoadError as exc:
            self._record(str(exc))
            raise

    def load_certificate_bytes(self, data: bytes) -> x509.Certificate:
        """Load the signing certificate from PEM or DER bytes."""
        try:
            certificate = load_certificate_data(data)
        except FormatError as exc:
            self._record(str(exc))
            raise
        self._certificate = certificate
        return certificate

    def load_private_key(self, path: Path, password: str | None = None) -> None:
        """Load the RSA private key matching the signing certificate.

        Args:
            path: PEM encoded private key
            password: Passphrase for encrypted keys; ignored for plain keys

        Raises:
            LoadError: If the file cannot be read
            KeyDecryptError: If the key is encrypted and the password is
                missing or wrong
            FormatError: If the file is not an RSA private key
        """
        try:
            data = _read_bytes(path, "private key")
        except LoadError as exc:
            self._record(str(exc))
            raise

        encrypted = any(marker in data for marker in _ENCRYPTED_MARKERS)
        if encrypted and not password:
            raise KeyDecryptError(self._record("private key is encrypted; password required"))

        secret = password.encode("utf-8") if encrypted and password else None
        try:
            key = serialization.load_pem_private_key(data, password=secret)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            if encrypted:
                raise KeyDecryptError(
                    self._record(f"cannot decrypt private key ({exc})")
                ) from exc
            raise FormatError(self._record(f"invalid private key: {exc}")) from exc

        if not isinstance(key, rsa.RSAPrivateKey):
            raise FormatError(self._record("private key is not an RSA key"))
        self._private_key = key

    def keys_match(self) -> bool:
        """Return True iff the private key belongs to the loaded certificate."""
        if self._certificate is None or self._private_key is None:
            self._record("certificate and private key must both be loaded")
            return False

        cert_key = self._certificate.public_key()
        if not isinstance(cert_key, rsa.RSAPublicKey):
            self._record("certificate does not carry an RSA public key")
            return False

        if cert_key.public_numbers() != self._private_key.public_key().public_numbers():
            self._record("public key of certificate and private key differ")
            return False
        return True

    def sign(self, data: bytes, hash_algorithm: str, *, require_certificate: bool = True) -> bytes:
        """Sign ``data`` with the loaded identity (RSA PKCS#1 v1.5).

        Args:
            data: Bytes to sign
            hash_algorithm: Hash algorithm name
            require_certificate: False to sign with a bare private key, as
                repository master keys do for whitelists

        Raises:
            CryptoError: If no identity is loaded
            KeyMismatchError: If the private key does not match the certificate
        """
        if self._private_key is None:
            raise CryptoError(self._record("no private key loaded"))
        if self._certificate is None and require_certificate:
            raise CryptoError(self._record("no signing certificate loaded"))
        if self._certificate is not None and not self.keys_match():
            raise KeyMismatchError(self._last_error)

        return self._private_key.sign(data, padding.PKCS1v15(), get_hash_algorithm(hash_algorithm))

    # ------------------------------------------------------------------ #
    # Trusted material
    # ------------------------------------------------------------------ #

    def load_trusted_public_keys(self, paths: str | Iterable[Path | str]) -> int:
        """Replace the pinned public keys with those found at ``paths``.

        Args:
            paths: Iterable of PEM files, or a colon-separated string

        Returns:
            Number of keys loaded

        Raises:
            LoadError: If any file cannot be read or no path is given
            FormatError: If any file is not an RSA public key
        """
        if isinstance(paths, str):
            candidates = [Path(item) for item in paths.split(":") if item]
        else:
            candidates = [Path(item) for item in paths]
        if not candidates:
            raise LoadError(self._record("no public key path given"))

        keys: list[rsa.RSAPublicKey] = []
        for path in candidates:
            try:
                data = _read_bytes(path, "public key")
            except LoadError as exc:
                self._record(str(exc))
                raise
            try:
                key = serialization.load_pem_public_key(data)
            except (ValueError, UnsupportedAlgorithm) as exc:
                raise FormatError(self._record(f"invalid public key {path}: {exc}")) from exc
            if not isinstance(key, rsa.RSAPublicKey):
                raise FormatError(self._record(f"public key {path} is not an RSA key"))
            keys.append(key)

        self._public_keys = keys
        return len(keys)

    def load_trusted_ca_crl(self, path: Path) -> tuple[int, int]:
        """Replace the CA/CRL material with the bundle at ``path``.

        ``path`` is either a PEM bundle or a directory of PEM files; each may
        hold any mix of ``CERTIFICATE`` and ``X509 CRL`` blocks.

        Returns:
            Tuple of (CA certificate count, CRL count)

        Raises:
            LoadError: If the bundle cannot be read
            FormatError: If a block cannot be parsed or no CA is present
        """
        path = Path(path)
        try:
            if path.is_dir():
                files = sorted(entry for entry in path.iterdir() if entry.is_file())
            else:
                files = [path]
            blobs = [_read_bytes(entry, "CA/CRL file") for entry in files]
        except LoadError as exc:
            self._record(str(exc))
            raise

        cas: list[x509.Certificate] = []
        crls: list[x509.CertificateRevocationList] = []
        for blob in blobs:
            for match in _PEM_BLOCK.finditer(blob):
                label = match.group("label")
                try:
                    if label in (b"CERTIFICATE", b"TRUSTED CERTIFICATE"):
                        cas.append(x509.load_pem_x509_certificate(match.group(0)))
                    elif label == b"X509 CRL":
                        crls.append(x509.load_pem_x509_crl(match.group(0)))
                except ValueError as exc:
                    raise FormatError(
                        self._record(f"invalid {label.decode()} block in {path}: {exc}")
                    ) from exc

        if not cas:
            raise FormatError(self._record(f"no CA certificate found in {path}"))

        self._ca_certificates = cas
        self._crls = crls
        return len(cas), len(crls)

    def has_public_keys(self) -> bool:
        return bool(self._public_keys)

    def has_ca_material(self) -> bool:
        return bool(self._ca_certificates)

    def has_trusted_material(self) -> bool:
        return self.has_public_keys() or self.has_ca_material()

    # ------------------------------------------------------------------ #
    # Verification
    # ------------------------------------------------------------------ #

    def verify_signature(
        self,
        data: bytes,
        signature: bytes,
        certificate: x509.Certificate,
        hash_algorithm: str,
    ) -> bool:
        """Return True iff ``signature`` over ``data`` verifies with ``certificate``."""
        public_key = certificate.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            self._record("signing certificate does not carry an RSA public key")
            return False
        return self._verify_with_key(public_key, data, signature, hash_algorithm)

    def verify_with_public_keys(self, data: bytes, signature: bytes, hash_algorithm: str) -> bool:
        """Return True iff any pinned public key verifies ``signature``."""
        if not self._public_keys:
            self._record("no trusted public keys loaded")
            return False
        for key in self._public_keys:
            if self._verify_with_key(key, data, signature, hash_algorithm):
                return True
        self._record("signature does not match any trusted public key")
        return False

    def verify_with_ca(
        self,
        data: bytes,
        signature: bytes,
        certificate: x509.Certificate,
        hash_algorithm: str,
        now: datetime | None = None,
    ) -> bool:
        """Verify ``signature`` with a certificate that chains to a trusted CA.

        The certificate must be directly issued by a loaded CA, be inside its
        validity window and not be revoked by a CRL of that CA.
        """
        if not self._ca_certificates:
            self._record("no trusted CA certificates loaded")
            return False

        issuer = self._find_issuer(certificate)
        if issuer is None:
            self._record("certificate is not issued by a trusted CA")
            return False

        moment = now or datetime.now(UTC)
        if not certificate.not_valid_before_utc <= moment <= certificate.not_valid_after_utc:
            self._record("certificate is outside its validity period")
            return False

        for crl in self._crls:
            if crl.issuer != issuer.subject:
                continue
            if not crl.is_signature_valid(issuer.public_key()):  # type: ignore[arg-type]
                logger.warning("Ignoring CRL with invalid signature from %s", crl.issuer.rfc4514_string())
                continue
            if crl.get_revoked_certificate_by_serial_number(certificate.serial_number) is not None:
                self._record("certificate has been revoked by its CA")
                return False

        return self.verify_signature(data, signature, certificate, hash_algorithm)

    def _find_issuer(self, certificate: x509.Certificate) -> x509.Certificate | None:
        for ca in self._ca_certificates:
            try:
                certificate.verify_directly_issued_by(ca)
            except (ValueError, TypeError, InvalidSignature):
                continue
            return ca
        return None

    def _verify_with_key(
        self,
        key: rsa.RSAPublicKey,
        data: bytes,
        signature: bytes,
        hash_algorithm: str,
    ) -> bool:
        try:
            key.verify(signature, data, padding.PKCS1v15(), get_hash_algorithm(hash_algorithm))
        except InvalidSignature:
            self._record("signature verification failed")
            return False
        return True
