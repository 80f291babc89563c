"""Helper utilities for tests: torrent factory and in-memory clients."""

from typing import Dict, Iterable, List, Optional

from tqm.clients.base import TagClient, TorrentClient
from tqm.errors import ActionError, ConnectError
from tqm.models import FilterConfig, LabelRule, TagRule, TorrentRecord
from tqm.torrent_filter import TorrentFilter

GB = 1024**3


def make_torrent(hash: str = 'abc123', name: Optional[str] = None, **kwargs) -> TorrentRecord:
    """Build a TorrentRecord with sensible defaults for a completed, seeding torrent."""
    defaults = dict(
        name=name or f"Torrent {hash}",
        path='/downloads',
        total_bytes=GB,
        downloaded_bytes=GB,
        state='uploading',
        files=(f"/downloads/{hash}.mkv",),
        seeding=True,
        ratio=1.0,
        added_seconds=86400,
        seeding_seconds=86400,
        tracker_name='example.org',
        tracker_status='Working',
    )
    defaults.update(kwargs)
    return TorrentRecord(hash=hash, **defaults)


def snapshot(*torrents: TorrentRecord) -> Dict[str, TorrentRecord]:
    return {t.hash: t for t in torrents}


def make_filter(ignore=(), remove=(), label=(), tag=()) -> TorrentFilter:
    """Compile a filter from plain rule lists.

    label: iterable of (name, [updates]); tag: iterable of (name, mode, [updates])
    """
    config = FilterConfig(
        ignore=list(ignore),
        remove=list(remove),
        label=[LabelRule(name, list(update)) for name, update in label],
        tag=[TagRule(name, mode, list(update)) for name, mode, update in tag],
    )
    return TorrentFilter.from_config(config, name='test')


class FakeClient(TorrentClient):
    """TorrentClient that records every remote call instead of making it."""

    type_name = 'Fake'

    def __init__(self, torrents: Optional[Dict[str, TorrentRecord]] = None,
                 free_space: int = 0, fail_hashes: Iterable[str] = (), fail_connect: bool = False,
                 name: str = 'fake'):
        self.sleeps: List[float] = []
        super().__init__(name, sleep=self.sleeps.append)
        self.torrents = dict(torrents or {})
        self.free_space = free_space
        self.fail_hashes = set(fail_hashes)
        self.fail_connect = fail_connect
        self.calls: List[tuple] = []
        self.connected = False
        self.closed = False

    def connect(self) -> None:
        if self.fail_connect:
            raise ConnectError("connection refused")
        self.connected = True

    def close(self) -> None:
        self.closed = True

    def get_torrents(self) -> Dict[str, TorrentRecord]:
        return dict(self.torrents)

    def set_label(self, torrent_hash: str, label: str) -> None:
        self._record('set_label', torrent_hash, label)

    def _fetch_free_space(self, path: str) -> int:
        return self.free_space

    def _record(self, call: str, torrent_hash: str, *args) -> None:
        self.calls.append((call, torrent_hash) + args)
        if torrent_hash in self.fail_hashes:
            raise ActionError(f"{call} rejected")

    def _pause(self, torrent_hash: str) -> None:
        self._record('pause', torrent_hash)

    def _resume(self, torrent_hash: str) -> None:
        self._record('resume', torrent_hash)

    def _reannounce(self, torrent_hash: str) -> None:
        self._record('reannounce', torrent_hash)

    def _delete(self, torrent_hash: str, delete_data: bool) -> None:
        self._record('delete', torrent_hash, delete_data)

    def action_calls(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


class FakeTagClient(FakeClient, TagClient):
    """FakeClient with tag support."""

    type_name = 'FakeTag'

    def add_tags(self, torrent_hashes, tags) -> None:
        for torrent_hash in torrent_hashes:
            self._record('add_tags', torrent_hash, list(tags))

    def remove_tags(self, torrent_hashes, tags) -> None:
        for torrent_hash in torrent_hashes:
            self._record('remove_tags', torrent_hash, list(tags))

    def create_tags(self, tags) -> None:
        self.calls.append(('create_tags', list(tags)))

    def delete_tags(self, tags) -> None:
        self.calls.append(('delete_tags', list(tags)))
