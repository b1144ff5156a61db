"""Signed, timestamped, repository-bound letters.

A letter travels as one line of URL-safe base64 wrapping::

    <payload>
    --
    N<repository name>
    T<unix timestamp of signing>
    A<hash algorithm>
    C<base64 DER signing certificate>
    --
    S<base64 signature>

The signature covers ``name + "\\n" + timestamp + "\\n" + payload``.
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from lettertrust.crypto.signature import SignatureManager, fingerprint, load_certificate_data
from lettertrust.errors import (
    ConfigError,
    CryptoError,
    FormatError,
    LetterFailure,
    LetterVerificationError,
    MalformedLetterError,
)
from lettertrust.utils.hashing import DEFAULT_HASH_ALGORITHM, parse_hash_algorithm

SEPARATOR = "\n--\n"
_UNIX_TIME = re.compile(r"[0-9]+")


def signed_bytes(fqrn: str, timestamp: int, payload: str) -> bytes:
    """Bytes covered by a letter signature."""
    return f"{fqrn}\n{timestamp}\n{payload}".encode("utf-8")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _malformed(message: str) -> MalformedLetterError:
    return MalformedLetterError(message)


@dataclass(frozen=True, slots=True)
class Letter:
    """Decoded letter envelope. Fields are untrusted until verified."""

    fqrn: str
    payload: str
    timestamp: int
    hash_algorithm: str
    certificate: x509.Certificate
    signature: bytes

    def encode(self) -> str:
        """Render the single-line wire envelope."""
        der = self.certificate.public_bytes(serialization.Encoding.DER)
        text = (
            f"{self.payload}{SEPARATOR}"
            f"N{self.fqrn}\nT{self.timestamp}\nA{self.hash_algorithm}\nC{_b64(der)}"
            f"{SEPARATOR}S{_b64(self.signature)}"
        )
        return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, envelope: str) -> "Letter":
        """Parse a wire envelope.

        Raises:
            LetterVerificationError: With ``MALFORMED`` on any syntax violation
        """
        try:
            raw = base64.b64decode(envelope.strip(), altchars=b"-_", validate=True)
            text = raw.decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise _malformed(f"envelope is not valid base64 text: {exc}") from exc

        head, separator, signature_part = text.rpartition(SEPARATOR)
        if not separator:
            raise _malformed("missing signature section")
        payload, separator, meta = head.rpartition(SEPARATOR)
        if not separator:
            raise _malformed("missing metadata section")

        meta_lines = meta.split("\n")
        if len(meta_lines) != 4 or [line[:1] for line in meta_lines] != ["N", "T", "A", "C"]:
            raise _malformed("metadata must hold N, T, A and C lines in order")
        name_line, time_line, algorithm_line, cert_line = meta_lines

        fqrn = name_line[1:]
        if not fqrn:
            raise _malformed("empty repository name")
        if not _UNIX_TIME.fullmatch(time_line[1:]):
            raise _malformed(f"invalid timestamp '{time_line[1:]}'")
        try:
            algorithm = parse_hash_algorithm(algorithm_line[1:])
        except ConfigError as exc:
            raise _malformed(str(exc)) from exc
        try:
            certificate = load_certificate_data(base64.b64decode(cert_line[1:], validate=True))
        except (binascii.Error, FormatError) as exc:
            raise _malformed(f"invalid certificate: {exc}") from exc

        if not signature_part.startswith("S"):
            raise _malformed("missing signature line")
        try:
            signature = base64.b64decode(signature_part[1:], validate=True)
        except binascii.Error as exc:
            raise _malformed(f"signature is not base64: {exc}") from exc

        return cls(
            fqrn=fqrn,
            payload=payload,
            timestamp=int(time_line[1:]),
            hash_algorithm=algorithm,
            certificate=certificate,
            signature=signature,
        )


@dataclass(frozen=True, slots=True)
class VerifiedLetter:
    """Payload and signer of a letter that passed verification."""

    payload: str
    certificate: x509.Certificate
    fqrn: str
    timestamp: int

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.certificate)


def sign_letter(
    fqrn: str,
    payload: str,
    signature_manager: SignatureManager,
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM,
    *,
    now: float | None = None,
) -> str:
    """Sign ``payload`` for repository ``fqrn`` and return the envelope.

    Raises:
        ConfigError: On an empty/multi-line repository name or unknown algorithm
        CryptoError: If the manager has no matching identity loaded
    """
    if not fqrn or "\n" in fqrn:
        raise ConfigError("repository name must be a non-empty single line")
    algorithm = parse_hash_algorithm(hash_algorithm)

    certificate = signature_manager.certificate
    if certificate is None or not signature_manager.has_identity():
        raise CryptoError("no signing identity loaded")

    timestamp = int(time.time() if now is None else now)
    signature = signature_manager.sign(signed_bytes(fqrn, timestamp, payload), algorithm)
    letter = Letter(
        fqrn=fqrn,
        payload=payload,
        timestamp=timestamp,
        hash_algorithm=algorithm,
        certificate=certificate,
        signature=signature,
    )
    return letter.encode()


def verify_letter(
    envelope: str,
    expected_fqrn: str,
    max_age: int,
    signature_manager: SignatureManager,
    *,
    now: float | None = None,
) -> VerifiedLetter:
    """Verify an envelope and return its payload and signer.

    Checks run in order and stop at the first failure: parse, signature,
    repository name, age. Embedded fields are only consulted for policy after
    the signature over them has been verified.

    Raises:
        LetterVerificationError: With the failing check as ``failure``
    """
    letter = Letter.decode(envelope)

    message = signed_bytes(letter.fqrn, letter.timestamp, letter.payload)
    if not signature_manager.verify_signature(
        message, letter.signature, letter.certificate, letter.hash_algorithm
    ):
        raise LetterVerificationError(
            LetterFailure.BAD_SIGNATURE,
            signature_manager.last_error or "signature verification failed",
        )

    if letter.fqrn != expected_fqrn:
        raise LetterVerificationError(
            LetterFailure.REPOSITORY_MISMATCH,
            f"letter is for '{letter.fqrn}', expected '{expected_fqrn}'",
        )

    age = int(time.time() if now is None else now) - letter.timestamp
    if age > max_age:
        raise LetterVerificationError(
            LetterFailure.TOO_OLD, f"letter is {age}s old, maximum is {max_age}s"
        )

    return VerifiedLetter(
        payload=letter.payload,
        certificate=letter.certificate,
        fqrn=letter.fqrn,
        timestamp=letter.timestamp,
    )
