"""Concrete adapters implementing the application ports."""

__all__ = ["HttpFetcher"]

from lettertrust.app.adapters.http_fetcher import HttpFetcher
