"""Exception hierarchy and failure kinds shared across lettertrust."""

from __future__ import annotations

from enum import Enum, IntEnum


class ExitCode(IntEnum):
    """Process exit codes of the letter command."""

    OK = 0
    INVALID_ARGUMENTS = 1
    LOAD_FAILED = 2
    LETTER_INVALID = 3
    WHITELIST_EXPIRED = 4
    NOT_TRUSTED = 5


class LetterTrustError(Exception):
    """Base class for all lettertrust errors."""


class ConfigError(LetterTrustError):
    """Invalid arguments, option combinations or settings."""


class LoadError(LetterTrustError):
    """Key, certificate, trust material or list could not be loaded."""


class FormatError(LoadError):
    """Loaded material is present but cannot be parsed."""


class BlacklistError(LoadError):
    """Local blacklist contains a malformed entry."""


class CryptoError(LetterTrustError):
    """Signature, key mismatch or decryption failure."""


class KeyDecryptError(CryptoError):
    """Encrypted private key could not be decrypted with the given password."""


class KeyMismatchError(CryptoError):
    """Private key does not belong to the loaded certificate."""


class ProtocolError(LetterTrustError):
    """Malformed whitelist document or letter envelope."""


class TrustError(LetterTrustError):
    """Certificate or message is not trusted."""


class FetchError(LoadError):
    """Remote document could not be retrieved."""


class WhitelistFailure(str, Enum):
    """Reasons a whitelist load is rejected."""

    FETCH_ERROR = "fetch_error"
    SIGNATURE_INVALID = "signature_invalid"
    IDENTITY_MISMATCH = "identity_mismatch"
    MALFORMED = "malformed"


class LetterFailure(str, Enum):
    """Reasons a letter fails verification, in the order they are checked."""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    REPOSITORY_MISMATCH = "repository_mismatch"
    TOO_OLD = "too_old"


class WhitelistError(LoadError):
    """Whitelist could not be loaded; ``failure`` names the cause."""

    def __init__(self, failure: WhitelistFailure, message: str) -> None:
        super().__init__(f"{failure.value}: {message}")
        self.failure = failure
        self.message = message


class LetterVerificationError(TrustError):
    """Letter failed verification; ``failure`` names the cause."""

    def __init__(self, failure: LetterFailure, message: str) -> None:
        super().__init__(f"{failure.value}: {message}")
        self.failure = failure
        self.message = message


class MalformedWhitelistError(WhitelistError, ProtocolError):
    """Whitelist document violates the document syntax."""

    def __init__(self, message: str) -> None:
        super().__init__(WhitelistFailure.MALFORMED, message)


class MalformedLetterError(LetterVerificationError, ProtocolError):
    """Letter envelope violates the envelope syntax."""

    def __init__(self, message: str) -> None:
        super().__init__(LetterFailure.MALFORMED, message)
