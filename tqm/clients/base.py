"""Torrent client interface shared by all adapters."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List
from urllib.parse import urlparse

import tldextract

from tqm.errors import ActionError
from tqm.models import TorrentRecord


GIB = 1024**3


# Bundled public suffix snapshot only, never fetched or cached at runtime
_domain_extract = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def parse_tracker_domain(tracker_url: str) -> str:
    """
    Reduce a tracker announce URL to its registered domain.

    ``https://tracker.example.org:2710/abc/announce`` becomes ``example.org``
    and ``https://tracker.example.co.uk/announce`` becomes ``example.co.uk``.
    Hosts without a public suffix, such as IP addresses, are returned as-is,
    unparseable input is returned unchanged.
    """
    if not tracker_url:
        return tracker_url

    host = urlparse(tracker_url).hostname
    if not host:
        return tracker_url

    parts = _domain_extract(host)
    if not parts.domain or not parts.suffix:
        return host
    return f"{parts.domain}.{parts.suffix}"


class TorrentClient(ABC):
    """A connection to one configured torrent client.

    Adapters implement the remote primitives; the removal sequence and the
    free space bookkeeping are shared.
    """

    type_name = 'torrent client'

    def __init__(self, name: str, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize client.

        Args:
            name: Client name from the configuration
            sleep: Delay function used between remote calls
        """
        self.name = name
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)
        self._free_space_bytes = 0
        self.free_space_set = False

    # Remote primitives

    @abstractmethod
    def connect(self) -> None:
        """Log in and check the remote API. Raises ConnectError."""

    @abstractmethod
    def get_torrents(self) -> Dict[str, TorrentRecord]:
        """Fetch a snapshot of every torrent keyed by hash. Raises ConnectError."""

    @abstractmethod
    def set_label(self, torrent_hash: str, label: str) -> None:
        """Set the label (category) of a torrent. Raises ActionError."""

    @abstractmethod
    def _fetch_free_space(self, path: str) -> int:
        """Free bytes reported by the client for `path`."""

    @abstractmethod
    def _pause(self, torrent_hash: str) -> None:
        ...

    @abstractmethod
    def _resume(self, torrent_hash: str) -> None:
        ...

    @abstractmethod
    def _reannounce(self, torrent_hash: str) -> None:
        ...

    @abstractmethod
    def _delete(self, torrent_hash: str, delete_data: bool) -> None:
        ...

    def close(self) -> None:
        """Release the connection. Nothing to do unless the adapter holds a session."""

    # Shared behaviour

    def remove_torrent(self, torrent_hash: str, delete_data: bool) -> bool:
        """
        Remove a torrent from the client.

        The torrent is paused, resumed and re-announced before it is deleted
        so the tracker records the final upload stats.

        Args:
            torrent_hash: Torrent hash
            delete_data: Also delete the torrent's files

        Returns:
            True once the client accepted the removal

        Raises:
            ActionError: If any step is rejected
        """
        steps = (
            ('pause torrent', self._pause, 1),
            ('resume torrent', self._resume, 2),
            ('re-announce torrent', self._reannounce, 2),
        )
        for step, action, delay in steps:
            self._run_step(step, torrent_hash, action, torrent_hash)
            self.sleep(delay)

        self._run_step('delete torrent', torrent_hash, self._delete, torrent_hash, delete_data)
        return True

    @staticmethod
    def _run_step(step: str, torrent_hash: str, action, *args) -> None:
        try:
            action(*args)
        except ActionError as e:
            raise ActionError(f"{step}: {torrent_hash}: {e}") from e

    def get_current_free_space(self, path: str) -> int:
        """
        Refresh the free space counter from the client.

        Args:
            path: Path to measure (ignored by clients that report one global value)

        Returns:
            Free space in bytes

        Raises:
            ActionError: If the client could not report it
        """
        free_bytes = int(self._fetch_free_space(path))
        self._free_space_bytes = free_bytes
        self.free_space_set = True
        self.logger.debug(f"Free space for {path!r}: {free_bytes / GIB:.2f} GB")
        return free_bytes

    def add_free_space(self, size: int) -> None:
        """Account for bytes released by a hard removal. Local only."""
        self._free_space_bytes += size

    @property
    def free_space_gb(self) -> float:
        return self._free_space_bytes / GIB

    def __str__(self) -> str:
        return f"{self.name} ({self.type_name})"


class TagClient(TorrentClient):
    """A client that also supports tags."""

    @abstractmethod
    def add_tags(self, torrent_hashes: Iterable[str], tags: List[str]) -> None:
        ...

    @abstractmethod
    def remove_tags(self, torrent_hashes: Iterable[str], tags: List[str]) -> None:
        ...

    @abstractmethod
    def create_tags(self, tags: List[str]) -> None:
        ...

    @abstractmethod
    def delete_tags(self, tags: List[str]) -> None:
        ...
