"""HTTP and local-file implementation of the fetcher port."""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from lettertrust import __version__
from lettertrust.app.ports import FetcherPort
from lettertrust.errors import FetchError
from lettertrust.utils.offline import OfflineModeGate

logger = logging.getLogger(__name__)


class HttpFetcher(FetcherPort):
    """Fetch documents over http(s) with bounded retries, or from local files."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        retries: int = 1,
        gate: OfflineModeGate | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self._gate = gate or OfflineModeGate(offline=False)
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", f"lettertrust/{__version__}")

        retry = Retry(
            total=retries,
            backoff_factor=0.5,
            status_forcelist=(502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def fetch(self, url: str) -> bytes:
        parsed = urlparse(url)
        scheme = parsed.scheme.lower()

        if scheme in ("", "file"):
            path = Path(unquote(parsed.path)) if scheme == "file" else Path(url)
            try:
                return path.read_bytes()
            except OSError as exc:
                raise FetchError(f"cannot read {path}: {exc.strerror or exc}") from exc

        if scheme not in ("http", "https"):
            raise FetchError(f"unsupported URL scheme '{scheme}' in {url}")

        try:
            self._gate.require(url)
        except RuntimeError as exc:
            raise FetchError(str(exc)) from exc

        logger.debug("Fetching %s (timeout %.1fs)", url, self.timeout)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(f"download of {url} failed: {exc}") from exc

        if response.status_code != 200:
            raise FetchError(f"download of {url} failed: HTTP {response.status_code}")
        return response.content

    def close(self) -> None:
        self.session.close()
