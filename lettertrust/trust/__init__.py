"""Trust state (blacklist, whitelist), letters and the trust decision."""

from lettertrust.trust.blacklist import Blacklist
from lettertrust.trust.decision import TrustDecision, TrustOutcome, TrustResult
from lettertrust.trust.letter import Letter, VerifiedLetter, sign_letter, verify_letter
from lettertrust.trust.whitelist import (
    TrustPolicy,
    Whitelist,
    WhitelistHolder,
    WhitelistLoader,
    build_whitelist_document,
    parse_whitelist,
)

__all__ = [
    "Blacklist",
    "Letter",
    "TrustDecision",
    "TrustOutcome",
    "TrustPolicy",
    "TrustResult",
    "VerifiedLetter",
    "Whitelist",
    "WhitelistHolder",
    "WhitelistLoader",
    "build_whitelist_document",
    "parse_whitelist",
    "sign_letter",
    "verify_letter",
]
