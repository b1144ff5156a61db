"""Signed, repository-scoped, time-bounded certificate whitelist.

Document layout (UTF-8, one field per line, typed by its first character)::

    I<issued-at YYYYMMDDhhmmss UTC>
    E<expires-at YYYYMMDDhhmmss UTC>
    N<repository name>
    F<certificate fingerprint>        zero or more
    --
    H<hash algorithm>:<hex digest of all bytes above the "--" line>
    S<base64 signature over the same bytes>
    C<base64 DER signer certificate>  optional, needed for CA/CRL trust

A document is only turned into a :class:`Whitelist` after its digest,
signature and repository name have all been verified.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from pydantic import BaseModel, ConfigDict, Field

from lettertrust.crypto.signature import (
    SignatureManager,
    fingerprint,
    load_certificate_data,
    normalize_fingerprint,
)
from lettertrust.errors import (
    ConfigError,
    FetchError,
    FormatError,
    MalformedWhitelistError,
    WhitelistError,
    WhitelistFailure,
)
from lettertrust.utils.hashing import DEFAULT_HASH_ALGORITHM, compute_digest, parse_hash_algorithm

if TYPE_CHECKING:  # pragma: no cover
    from lettertrust.app.ports import FetcherPort

logger = logging.getLogger(__name__)

DEFAULT_WHITELIST_FILENAME = ".cvmfswhitelist"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
SEPARATOR = "--"
_TIMESTAMP_DIGITS = re.compile(r"[0-9]{14}")
_HEX_DIGEST = re.compile(r"[0-9a-f]+")


class TrustPolicy(str, Enum):
    """Which trusted material may vouch for a whitelist signature."""

    ANY = "any"
    PUBLIC_KEY = "public_key"
    CA = "ca"


def format_timestamp(moment: datetime) -> str:
    """Render ``moment`` in the whitelist timestamp format (UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> datetime:
    """Parse a whitelist timestamp into an aware UTC datetime.

    Raises:
        ValueError: If ``text`` is not a 14-digit timestamp
    """
    if not _TIMESTAMP_DIGITS.fullmatch(text):
        raise ValueError(f"invalid timestamp '{text}'")
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=UTC)


class Whitelist(BaseModel):
    """Verified whitelist value. Never mutated; replaced wholesale on refresh."""

    model_config = ConfigDict(frozen=True)

    fqrn: str = Field(..., description="Repository the whitelist applies to")
    fingerprints: frozenset[str] = Field(default_factory=frozenset)
    issued_at: datetime
    expires_at: datetime
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    signer_fingerprint: str | None = Field(
        default=None,
        description="Fingerprint of the embedded signer certificate, if any",
    )

    def expires(self) -> datetime:
        return self.expires_at

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True strictly after ``expires_at``; still valid at that instant."""
        moment = now or datetime.now(UTC)
        return moment > self.expires_at

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        """Return True if the whitelist expires less than ``seconds`` from ``now``."""
        moment = now or datetime.now(UTC)
        return moment + timedelta(seconds=seconds) > self.expires_at

    def contains(self, fingerprint_text: str) -> bool:
        try:
            return normalize_fingerprint(fingerprint_text) in self.fingerprints
        except ValueError:
            return False


@dataclass(frozen=True, slots=True)
class WhitelistDocument:
    """Syntactically valid but not yet verified whitelist document."""

    body: bytes
    fqrn: str
    issued_at: datetime
    expires_at: datetime
    fingerprints: frozenset[str]
    hash_algorithm: str
    digest: str
    signature: bytes
    certificate: x509.Certificate | None


def _malformed(message: str) -> MalformedWhitelistError:
    return MalformedWhitelistError(message)


def parse_whitelist(data: bytes) -> WhitelistDocument:
    """Strictly parse a whitelist document without verifying it.

    Raises:
        WhitelistError: With ``MALFORMED`` on any syntax violation
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise _malformed(f"document is not UTF-8: {exc}") from exc

    body, separator, trailer = text.partition(f"\n{SEPARATOR}\n")
    if not separator:
        raise _malformed("missing signature trailer")

    fields: dict[str, str] = {}
    fingerprints: set[str] = set()
    for line_num, line in enumerate(body.split("\n"), start=1):
        if not line:
            raise _malformed(f"empty line {line_num}")
        marker, value = line[0], line[1:].strip()
        if marker == "F":
            try:
                fingerprints.add(normalize_fingerprint(value))
            except ValueError as exc:
                raise _malformed(f"line {line_num}: {exc}") from exc
        elif marker in ("I", "E", "N"):
            if marker in fields:
                raise _malformed(f"line {line_num}: duplicate '{marker}' field")
            fields[marker] = value
        else:
            raise _malformed(f"line {line_num}: unexpected marker '{marker}'")

    missing = [marker for marker in ("I", "E", "N") if marker not in fields]
    if missing:
        raise _malformed(f"missing field(s) {', '.join(missing)}")
    if not fields["N"]:
        raise _malformed("empty repository name")

    try:
        issued_at = parse_timestamp(fields["I"])
        expires_at = parse_timestamp(fields["E"])
    except ValueError as exc:
        raise _malformed(str(exc)) from exc
    if expires_at < issued_at:
        raise _malformed("expiry precedes issue time")

    trailer_lines = trailer.split("\n")
    if trailer_lines and trailer_lines[-1] == "":
        trailer_lines.pop()
    if len(trailer_lines) not in (2, 3):
        raise _malformed("signature trailer must hold H, S and optional C lines")

    hash_line, signature_line = trailer_lines[0], trailer_lines[1]
    if not hash_line.startswith("H") or ":" not in hash_line:
        raise _malformed("missing hash line in signature trailer")
    algorithm_name, digest = hash_line[1:].split(":", 1)
    digest = digest.strip().lower()
    if not _HEX_DIGEST.fullmatch(digest):
        raise _malformed("digest is not hexadecimal")
    try:
        algorithm = parse_hash_algorithm(algorithm_name)
    except ConfigError as exc:
        raise _malformed(str(exc)) from exc

    if not signature_line.startswith("S"):
        raise _malformed("missing signature line in signature trailer")
    try:
        signature = base64.b64decode(signature_line[1:], validate=True)
    except binascii.Error as exc:
        raise _malformed(f"signature is not base64: {exc}") from exc
    if not signature:
        raise _malformed("empty signature")

    certificate = None
    if len(trailer_lines) == 3:
        cert_line = trailer_lines[2]
        if not cert_line.startswith("C"):
            raise _malformed(f"unexpected trailer marker '{cert_line[:1]}'")
        try:
            certificate = load_certificate_data(base64.b64decode(cert_line[1:], validate=True))
        except (binascii.Error, FormatError) as exc:
            raise _malformed(f"invalid signer certificate: {exc}") from exc

    return WhitelistDocument(
        body=(body + "\n").encode("utf-8"),
        fqrn=fields["N"],
        issued_at=issued_at,
        expires_at=expires_at,
        fingerprints=frozenset(fingerprints),
        hash_algorithm=algorithm,
        digest=digest,
        signature=signature,
        certificate=certificate,
    )


def build_whitelist_document(
    fqrn: str,
    fingerprints: Iterable[str],
    signature_manager: SignatureManager,
    *,
    issued_at: datetime | None = None,
    validity: timedelta = timedelta(days=30),
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM,
    include_certificate: bool = False,
) -> bytes:
    """Render and sign a whitelist with the manager's loaded identity.

    Raises:
        ConfigError: On an empty repository name or bad fingerprint
        CryptoError: If the manager cannot sign
    """
    if not fqrn or "\n" in fqrn:
        raise ConfigError("repository name must be a non-empty single line")
    algorithm = parse_hash_algorithm(hash_algorithm)
    issued = issued_at or datetime.now(UTC).replace(microsecond=0)

    try:
        entries = sorted({normalize_fingerprint(item) for item in fingerprints})
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    lines = [
        f"I{format_timestamp(issued)}",
        f"E{format_timestamp(issued + validity)}",
        f"N{fqrn}",
        *(f"F{entry}" for entry in entries),
    ]
    body = ("\n".join(lines) + "\n").encode("utf-8")
    signature = signature_manager.sign(body, algorithm, require_certificate=include_certificate)

    trailer = [
        SEPARATOR,
        f"H{algorithm}:{compute_digest(body, algorithm)}",
        f"S{base64.b64encode(signature).decode('ascii')}",
    ]
    if include_certificate:
        certificate = signature_manager.certificate
        if certificate is None:
            raise ConfigError("no certificate loaded to embed")
        der = certificate.public_bytes(serialization.Encoding.DER)
        trailer.append(f"C{base64.b64encode(der).decode('ascii')}")

    return body + ("\n".join(trailer) + "\n").encode("utf-8")


@dataclass(slots=True)
class WhitelistLoader:
    """Fetch and verify whitelists for one repository."""

    fqrn: str
    fetcher: "FetcherPort"
    signature_manager: SignatureManager
    filename: str = DEFAULT_WHITELIST_FILENAME
    policy: TrustPolicy = TrustPolicy.ANY

    def document_urls(self, repository_url: str) -> list[str]:
        """Expand a ``;``-separated mirror list into whitelist URLs."""
        mirrors = [item.strip().rstrip("/") for item in repository_url.split(";")]
        return [f"{mirror}/{self.filename}" for mirror in mirrors if mirror]

    def load(self, repository_url: str) -> Whitelist:
        """Fetch the whitelist from the first reachable mirror and verify it.

        Raises:
            WhitelistError: ``FETCH_ERROR`` if no mirror delivers a document,
                otherwise the failure found while verifying it
        """
        urls = self.document_urls(repository_url)
        if not urls:
            raise WhitelistError(WhitelistFailure.FETCH_ERROR, "no repository URL given")

        last_error = ""
        for url in urls:
            try:
                data = self.fetcher.fetch(url)
            except FetchError as exc:
                logger.warning("Whitelist download from %s failed: %s", url, exc)
                last_error = str(exc)
                continue
            return self.load_document(data)

        raise WhitelistError(WhitelistFailure.FETCH_ERROR, last_error)

    def load_document(self, data: bytes, now: datetime | None = None) -> Whitelist:
        """Verify raw whitelist bytes and build the value."""
        document = parse_whitelist(data)

        expected_digest = compute_digest(document.body, document.hash_algorithm)
        if not hmac.compare_digest(expected_digest, document.digest):
            raise WhitelistError(WhitelistFailure.SIGNATURE_INVALID, "digest mismatch")

        self._verify_signature(document, now)

        if document.fqrn != self.fqrn:
            raise WhitelistError(
                WhitelistFailure.IDENTITY_MISMATCH,
                f"whitelist is for '{document.fqrn}', expected '{self.fqrn}'",
            )

        return Whitelist(
            fqrn=document.fqrn,
            fingerprints=document.fingerprints,
            issued_at=document.issued_at,
            expires_at=document.expires_at,
            hash_algorithm=document.hash_algorithm,
            signer_fingerprint=(
                fingerprint(document.certificate) if document.certificate is not None else None
            ),
        )

    def _verify_signature(self, document: WhitelistDocument, now: datetime | None) -> None:
        manager = self.signature_manager
        if not manager.has_trusted_material():
            raise WhitelistError(
                WhitelistFailure.SIGNATURE_INVALID, "no trusted public keys or CA loaded"
            )

        if self.policy in (TrustPolicy.ANY, TrustPolicy.PUBLIC_KEY) and manager.has_public_keys():
            if manager.verify_with_public_keys(
                document.body, document.signature, document.hash_algorithm
            ):
                return

        if (
            self.policy in (TrustPolicy.ANY, TrustPolicy.CA)
            and manager.has_ca_material()
            and document.certificate is not None
        ):
            if manager.verify_with_ca(
                document.body,
                document.signature,
                document.certificate,
                document.hash_algorithm,
                now,
            ):
                return

        raise WhitelistError(
            WhitelistFailure.SIGNATURE_INVALID,
            manager.last_error or "no trusted material vouches for the signature",
        )


@dataclass(slots=True)
class WhitelistHolder:
    """Current whitelist of a verification flow with proactive refresh."""

    loader: WhitelistLoader
    repository_url: str
    current: Whitelist
    refresh_window_seconds: float = 3 * 24 * 3600

    @classmethod
    def open(
        cls,
        loader: WhitelistLoader,
        repository_url: str,
        *,
        refresh_window_seconds: float = 3 * 24 * 3600,
    ) -> "WhitelistHolder":
        """Load the initial whitelist; failures propagate."""
        return cls(
            loader=loader,
            repository_url=repository_url,
            current=loader.load(repository_url),
            refresh_window_seconds=refresh_window_seconds,
        )

    def refresh_if_needed(self, now: datetime | None = None) -> bool:
        """Reload when close to expiry. Failures keep the current whitelist.

        Returns:
            True if a newer whitelist replaced the current one
        """
        if not self.current.expires_within(self.refresh_window_seconds, now):
            return False

        try:
            candidate = self.loader.load(self.repository_url)
        except WhitelistError as exc:
            if exc.failure is WhitelistFailure.FETCH_ERROR:
                logger.warning("Whitelist refresh failed, keeping current one: %s", exc)
            else:
                logger.error("Rejected refreshed whitelist, keeping current one: %s", exc)
            return False

        if candidate.issued_at < self.current.issued_at:
            logger.warning(
                "Ignoring refreshed whitelist issued %s, older than current %s",
                candidate.issued_at,
                self.current.issued_at,
            )
            return False

        self.current = candidate
        logger.info("Whitelist refreshed; now expires %s", candidate.expires_at)
        return True
