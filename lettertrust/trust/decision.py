"""Trust decision for one incoming letter.

Stages run in a fixed order and the first failing stage decides the outcome::

    verify letter -> refresh whitelist if near expiry -> blacklist
        -> whitelist expiry -> whitelist membership

The blacklist is consulted before whitelist membership, so a revoked
certificate is rejected even when the whitelist still lists it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from cryptography import x509

from lettertrust.crypto.signature import SignatureManager
from lettertrust.errors import ExitCode, LetterFailure, LetterVerificationError
from lettertrust.trust.blacklist import Blacklist
from lettertrust.trust.letter import verify_letter
from lettertrust.trust.whitelist import WhitelistHolder

logger = logging.getLogger(__name__)


class TrustOutcome(str, Enum):
    """Terminal result of a trust decision."""

    TRUSTED = "trusted"
    LETTER_INVALID = "letter_invalid"
    WHITELIST_EXPIRED = "whitelist_expired"
    BLACKLISTED = "blacklisted"
    NOT_WHITELISTED = "not_whitelisted"

    @property
    def exit_code(self) -> ExitCode:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    TrustOutcome.TRUSTED: ExitCode.OK,
    TrustOutcome.LETTER_INVALID: ExitCode.LETTER_INVALID,
    TrustOutcome.WHITELIST_EXPIRED: ExitCode.WHITELIST_EXPIRED,
    TrustOutcome.BLACKLISTED: ExitCode.NOT_TRUSTED,
    TrustOutcome.NOT_WHITELISTED: ExitCode.NOT_TRUSTED,
}


@dataclass(frozen=True, slots=True)
class TrustResult:
    """Outcome of evaluating one letter."""

    outcome: TrustOutcome
    payload: str | None = None
    certificate: x509.Certificate | None = None
    fingerprint: str | None = None
    letter_failure: LetterFailure | None = None
    detail: str = ""

    @property
    def trusted(self) -> bool:
        return self.outcome is TrustOutcome.TRUSTED

    @property
    def exit_code(self) -> ExitCode:
        return self.outcome.exit_code


@dataclass(slots=True)
class TrustDecision:
    """Evaluate letters for one repository against its trust state."""

    fqrn: str
    max_age: int
    signature_manager: SignatureManager
    whitelist: WhitelistHolder
    blacklist: Blacklist

    def evaluate(self, envelope: str, now: datetime | None = None) -> TrustResult:
        """Run every stage for ``envelope``; no retries within one call."""
        moment = now or datetime.now(UTC)

        try:
            letter = verify_letter(
                envelope,
                self.fqrn,
                self.max_age,
                self.signature_manager,
                now=moment.timestamp(),
            )
        except LetterVerificationError as exc:
            logger.info("Letter rejected: %s", exc)
            return TrustResult(
                outcome=TrustOutcome.LETTER_INVALID,
                letter_failure=exc.failure,
                detail=exc.message,
            )

        self.whitelist.refresh_if_needed(moment)
        current = self.whitelist.current
        signer = letter.fingerprint

        def reject(outcome: TrustOutcome, detail: str) -> TrustResult:
            logger.info("Certificate %s rejected: %s", signer, detail)
            return TrustResult(
                outcome=outcome,
                payload=letter.payload,
                certificate=letter.certificate,
                fingerprint=signer,
                detail=detail,
            )

        if self.blacklist.contains(signer):
            return reject(TrustOutcome.BLACKLISTED, "certificate is blacklisted")

        if current.is_expired(moment):
            return reject(
                TrustOutcome.WHITELIST_EXPIRED,
                f"whitelist expired at {current.expires_at.isoformat()}",
            )

        if not current.contains(signer):
            return reject(TrustOutcome.NOT_WHITELISTED, "certificate is not whitelisted")

        return TrustResult(
            outcome=TrustOutcome.TRUSTED,
            payload=letter.payload,
            certificate=letter.certificate,
            fingerprint=signer,
        )
