"""Fetcher port interface for downloading remote documents."""

from typing import Protocol


class FetcherPort(Protocol):
    """Port interface for retrieving a document by URL.

    Adapters own timeouts and retries: ``fetch`` returns within bounded time
    either the complete body or raises ``lettertrust.errors.FetchError``.

    Side effects: Network or filesystem reads.
    """

    def fetch(self, url: str) -> bytes:
        """Fetch ``url``.

        Args:
            url: http(s)://, file:// URL or local path

        Returns:
            Raw document bytes
        """
        ...

    def close(self) -> None:
        """Release connections held by the fetcher."""
        ...
