"""Application bootstrap wiring ports, adapters, and services."""

from __future__ import annotations

from dataclasses import dataclass

from lettertrust.app import LetterService
from lettertrust.app.adapters import HttpFetcher
from lettertrust.app.ports import FetcherPort
from lettertrust.config import Settings, get_settings
from lettertrust.utils.offline import OfflineModeGate


@dataclass(slots=True)
class ApplicationContainer:
    """Aggregates wired services and adapters for the CLI layer."""

    settings: Settings
    offline_gate: OfflineModeGate
    fetcher: FetcherPort
    letter_service: LetterService

    def close(self) -> None:
        """Release adapter resources; call once the command is done."""
        self.fetcher.close()


def bootstrap_application(
    settings: Settings | None = None,
    *,
    fetcher: FetcherPort | None = None,
) -> ApplicationContainer:
    """Create the application container.

    Args:
        settings: Settings to use (defaults to the global instance)
        fetcher: Replacement fetcher, e.g. an in-memory one in tests
    """
    active_settings = settings or get_settings()
    gate = OfflineModeGate.from_settings(active_settings)

    if fetcher is None:
        fetcher = HttpFetcher(
            timeout=active_settings.fetch_timeout_seconds,
            retries=active_settings.fetch_retries,
            gate=gate,
        )

    return ApplicationContainer(
        settings=active_settings,
        offline_gate=gate,
        fetcher=fetcher,
        letter_service=LetterService(settings=active_settings, fetcher=fetcher),
    )
