"""Offline gating for network fetches."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlparse

if TYPE_CHECKING:  # pragma: no cover
    from lettertrust.config import Settings

NETWORK_SCHEMES = frozenset({"http", "https"})


@dataclass(slots=True)
class OfflineModeGate:
    """Centralized guard for fetches that need the network."""

    offline: bool

    @classmethod
    def from_settings(cls, settings: "Settings") -> "OfflineModeGate":
        """Construct gate using configuration and environment overrides."""

        env_override = os.getenv("LETTERTRUST_OFFLINE")
        offline = settings.offline or (env_override is not None and env_override != "0")
        return cls(offline=offline)

    def is_online_enabled(self) -> bool:
        """Return True when network fetches may be attempted."""

        return not self.offline

    def require(self, url: str) -> None:
        """Raise if fetching ``url`` needs the network while offline."""

        if not self.offline:
            return

        if urlparse(url).scheme.lower() in NETWORK_SCHEMES:
            raise RuntimeError(
                f"Fetching {url} requires network access. "
                "Run without `--offline` and unset LETTERTRUST_OFFLINE."
            )
