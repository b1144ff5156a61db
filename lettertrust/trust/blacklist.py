"""Local certificate blacklist.

The blacklist is read once from a trust-boundary-protected local file and
overrides any remote whitelist. It is never refreshed and never expires.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from lettertrust.crypto.signature import normalize_fingerprint
from lettertrust.errors import BlacklistError

logger = logging.getLogger(__name__)

COMMENT_MARKER = "#"
# Catalog-revision entries share the file format but are not fingerprints.
REVISION_MARKER = "<"


@dataclass(frozen=True, slots=True)
class Blacklist:
    """Immutable set of revoked certificate fingerprints."""

    fingerprints: frozenset[str] = field(default_factory=frozenset)
    source: Path | None = None

    @classmethod
    def load(cls, path: Path) -> "Blacklist":
        """Load fingerprints from ``path``, one per line.

        A missing file yields an empty blacklist.

        Raises:
            BlacklistError: On an unreadable file or a malformed line
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No blacklist at %s; treating as empty", path)
            return cls(source=path)
        except (OSError, UnicodeDecodeError) as exc:
            raise BlacklistError(f"cannot read blacklist {path}: {exc}") from exc

        return cls.parse(text, source=path)

    @classmethod
    def parse(cls, text: str, *, source: Path | None = None) -> "Blacklist":
        """Parse blacklist content, failing closed on malformed lines."""
        entries: set[str] = set()
        for line_num, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith((COMMENT_MARKER, REVISION_MARKER)):
                continue
            try:
                entries.add(normalize_fingerprint(line))
            except ValueError as exc:
                where = f"{source}:{line_num}" if source else f"line {line_num}"
                raise BlacklistError(f"malformed blacklist entry at {where}: {exc}") from exc

        if entries:
            logger.info("Loaded %d blacklisted fingerprints from %s", len(entries), source)
        return cls(fingerprints=frozenset(entries), source=source)

    def contains(self, fingerprint: str) -> bool:
        """Return True if ``fingerprint`` is revoked."""
        try:
            return normalize_fingerprint(fingerprint) in self.fingerprints
        except ValueError:
            return False

    def __contains__(self, fingerprint: object) -> bool:
        return isinstance(fingerprint, str) and self.contains(fingerprint)

    def __len__(self) -> int:
        return len(self.fingerprints)
