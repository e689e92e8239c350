"""HTTP downloads for release archives and their checksum files."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable, Sequence

import requests

from paircli import __version__
from paircli.domain.errors import SourceResolutionError
from paircli.ports.fetch import Downloader

RETRY_DELAYS: tuple[float, ...] = (1.0, 2.0, 4.0)
CHUNK_SIZE = 1024 * 1024
DEFAULT_TIMEOUT = 60


class _Retryable(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class HttpDownloader(Downloader):
    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        timeout: float = DEFAULT_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or requests.Session()
        self._retry_delays = tuple(retry_delays)
        self._timeout = timeout
        self._sleep = sleep
        self._headers = {"User-Agent": f"pair-cli/{__version__}"}

    def download(self, url: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".part")

        def _attempt() -> Path:
            response = self._get(url, stream=True)
            try:
                self._raise_for_status(url, response)
                with partial.open("wb") as fh:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
            except (requests.ConnectionError, requests.Timeout, requests.exceptions.ChunkedEncodingError) as exc:
                raise _Retryable(str(exc)) from exc
            finally:
                response.close()
            os.replace(partial, destination)
            return destination

        try:
            return self._with_retries(url, _attempt)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

    def fetch_text(self, url: str) -> str | None:
        def _attempt() -> str | None:
            response = self._get(url, stream=False)
            try:
                if response.status_code == 404:
                    return None
                self._raise_for_status(url, response)
                return response.text
            finally:
                response.close()

        return self._with_retries(url, _attempt)

    def _get(self, url: str, *, stream: bool):
        try:
            return self._session.get(url, headers=self._headers, timeout=self._timeout, stream=stream)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise _Retryable(str(exc)) from exc

    def _raise_for_status(self, url: str, response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status >= 500:
            raise _Retryable(f"server error {status}")
        if status == 404:
            raise SourceResolutionError(
                f"Not found (404): {url}",
                hint=f"check the version or download manually from {url}",
            )
        if status == 403:
            raise SourceResolutionError(
                f"Access denied (403): {url}",
                hint="the release may be private or rate limited; retry later",
            )
        raise SourceResolutionError(f"Download failed with HTTP {status}: {url}")

    def _with_retries(self, url: str, attempt: Callable[[], object]):
        delays = list(self._retry_delays)
        while True:
            try:
                return attempt()
            except _Retryable as exc:
                if not delays:
                    raise SourceResolutionError(
                        f"Network error downloading {url}: {exc.reason}",
                        hint="check connectivity or use --offline with a cached version",
                    ) from exc
                self._sleep(delays.pop(0))


__all__ = ["HttpDownloader", "RETRY_DELAYS"]
