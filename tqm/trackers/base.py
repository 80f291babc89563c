"""Shared HTTP plumbing for private tracker APIs."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from tqm.errors import TrackerError
from tqm.models import TorrentRecord
from tqm.version import __version__


REQUEST_TIMEOUT = 15
MAX_RETRIES = 10
USER_AGENT = f"tqm/{__version__}"


def new_session() -> requests.Session:
    """
    Create an HTTP session that retries failed requests.

    Connection errors, 429 and 5xx responses are retried up to 10 times with
    exponential backoff.
    """
    retry = Retry(
        total=MAX_RETRIES,
        backoff_factor=1,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=None,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)

    session = requests.Session()
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    session.headers['User-Agent'] = USER_AGENT
    return session


class RateLimiter:
    """Allow at most one call per `interval` seconds."""

    def __init__(self, interval: float = 1.0, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self._next = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            now = self.clock()
            if now < self._next:
                self.sleep(self._next - now)
                now = self._next
            self._next = now + self.interval


class TrackerApi(ABC):
    """Lookup of torrents on one private tracker's API."""

    name = 'tracker'
    domain = ''

    def __init__(self, session: Optional[requests.Session] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        self.session = session or new_session()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.logger = logging.getLogger(__name__)

    def check(self, host: str) -> bool:
        """True if this API serves the given tracker host."""
        return bool(self.domain) and self.domain in host

    @abstractmethod
    def is_unregistered(self, torrent: TorrentRecord) -> bool:
        """
        Ask the tracker whether it still knows the torrent.

        Raises:
            TrackerError: If the lookup failed, the answer is then unknown
        """

    def _request(self, method: str, url: str, **kwargs) -> dict:
        """Send a rate limited request and decode the JSON response."""
        self.rate_limiter.wait()
        self.logger.debug(f"Sending request to {self.name} API")

        try:
            response = self.session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise TrackerError(f"{self.name.lower()}: request search: {e}") from e

        if response.status_code != 200:
            raise TrackerError(
                f"{self.name.lower()}: validate search response: HTTP {response.status_code}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise TrackerError(f"{self.name.lower()}: decode search response: {e}") from e
