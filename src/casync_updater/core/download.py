"""HTTP(S) download of remote sidecar files with bounded retries."""

import logging
import threading
import time

import requests

from ..errors import Unavailable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class Downloader:
    """Fetch small files (checksum and tree sidecars) from a web server.

    One ``requests.Session`` is kept per worker thread, since cycles for
    different entries run concurrently in the thread pool.

    Args:
        retries: Attempts per URL, including the first one.
        timeout: Read timeout in seconds.
        max_bytes: Upper bound on the response body size.
        backoff: Delay before the second attempt, doubled after each retry.
    """

    def __init__(
        self,
        retries: int = 3,
        timeout: float = 30.0,
        max_bytes: int = 64 * 1024 * 1024,
        backoff: float = 0.5,
    ) -> None:
        self.retries = max(1, retries)
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.backoff = backoff
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """Return the current thread's session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = requests.Session()
        return self._thread_local.session

    def fetch(self, url: str) -> bytes | None:
        """Download *url*.

        Returns:
            The response body, or ``None`` when the server answers 404.

        Raises:
            Unavailable: Unsupported scheme, network failure after all
                retries, unexpected HTTP status or oversized body.
        """
        if url.startswith("ftp://"):
            raise Unavailable(url, "FTP downloads are not supported")

        last_error: Exception | None = None
        for attempt in range(self.retries):
            if attempt:
                delay = self.backoff * (2 ** (attempt - 1))
                logger.debug(
                    "Retrying %s in %.1fs (attempt %d/%d)",
                    url,
                    delay,
                    attempt + 1,
                    self.retries,
                )
                time.sleep(delay)
            try:
                return self._fetch_once(url)
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_error = exc
                logger.debug("Download of %s failed: %s", url, exc)

        raise Unavailable(url, f"download failed: {last_error}")

    def _fetch_once(self, url: str) -> bytes | None:
        with self.session.get(
            url, stream=True, timeout=(10, self.timeout)
        ) as response:
            if response.status_code == 404:
                return None
            if response.status_code != 200:
                raise Unavailable(url, f"HTTP {response.status_code}")

            body = bytearray()
            for chunk in response.iter_content(CHUNK_SIZE):
                body.extend(chunk)
                if len(body) > self.max_bytes:
                    raise Unavailable(
                        url,
                        f"response exceeds {self.max_bytes} bytes",
                    )
            return bytes(body)
