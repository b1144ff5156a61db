"""Port interfaces for the lettertrust application layer.

Domain logic depends on these protocols, never on concrete adapters.
"""

__all__ = ["FetcherPort"]

from lettertrust.app.ports.fetcher import FetcherPort
