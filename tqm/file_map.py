"""Index of which torrents reference which files on disk."""

from typing import Dict, Iterable, Mapping, Optional, Set

from tqm.models import TorrentRecord


class TorrentFileMap:
    """Map each file path to the hashes of the torrents that contain it.

    A torrent whose files are all owned by itself alone is "unique": removing
    it together with its data cannot break another torrent. The map must be
    kept up to date as torrents are retired during a run, otherwise a torrent
    that shares files with an already removed one would never be seen as unique.
    """

    def __init__(self):
        self._owners: Dict[str, Set[str]] = {}

    @classmethod
    def from_torrents(cls, torrents: Iterable[TorrentRecord]) -> 'TorrentFileMap':
        """Build the map from a snapshot (any iterable of records)."""
        file_map = cls()
        for torrent in torrents:
            file_map.add(torrent)
        return file_map

    def add(self, torrent: TorrentRecord) -> None:
        for path in torrent.files:
            self._owners.setdefault(path, set()).add(torrent.hash)

    def remove(self, torrent: TorrentRecord) -> None:
        """Deregister a torrent from all its files, dropping files left without owners."""
        for path in torrent.files:
            owners = self._owners.get(path)
            if owners is None:
                continue
            owners.discard(torrent.hash)
            if not owners:
                del self._owners[path]

    def is_unique(self, torrent: TorrentRecord) -> bool:
        """True if no other torrent still in the map shares any of this torrent's files."""
        for path in torrent.files:
            owners = self._owners.get(path)
            if owners is not None and len(owners) > 1:
                return False
        return True

    def owners(self, path: str) -> Set[str]:
        return set(self._owners.get(path, ()))

    def has_path(self, local_path: str, path_mapping: Optional[Mapping[str, str]] = None) -> bool:
        """
        Check whether a local path belongs to any mapped torrent.

        This is a substring check, so a folder matches every file beneath it.
        When a path mapping is given, the first occurrence of each key in the
        torrent path is replaced by its value before checking, translating the
        client's view of the filesystem to the local one.

        Args:
            local_path: File or folder path as seen on this host
            path_mapping: Optional {client_prefix: local_prefix} mapping

        Returns:
            True if some torrent file path contains local_path
        """
        for torrent_path in self._owners:
            if not path_mapping:
                if local_path in torrent_path:
                    return True
                continue

            for map_from, map_to in path_mapping.items():
                if local_path in torrent_path.replace(map_from, map_to, 1):
                    return True

        return False

    def __len__(self) -> int:
        return len(self._owners)

    def __contains__(self, path: str) -> bool:
        return path in self._owners
