"""Removal of files and folders in a download directory that no torrent owns."""

import logging
import os
from typing import Mapping, Optional

from tqm.file_map import TorrentFileMap
from tqm.models import OrphanStats
from tqm.utils.format import format_bytes
from tqm.utils.paths import LocalPath, get_paths_in_folder


class OrphanCleaner:
    """Find and delete orphans below a client's download path."""

    def __init__(self, download_path: str, path_mapping: Optional[Mapping[str, str]] = None,
                 dry_run: bool = False):
        """
        Initialize orphan cleaner.

        Args:
            download_path: Local download directory of the client
            path_mapping: Optional {client_prefix: local_prefix} mapping
            dry_run: Log only, never delete
        """
        self.download_path = download_path
        self.path_mapping = dict(path_mapping or {})
        self.dry_run = dry_run
        self.logger = logging.getLogger(__name__)

    def clean(self, file_map: TorrentFileMap) -> OrphanStats:
        """
        Delete every path not contained in a mapped torrent path.

        Files are handled first, then folders from the deepest up, so a folder
        emptied of orphans can be removed in the same run. The download
        directory itself is never removed. Folders that still hold unmapped
        content cannot be removed and count as failures.

        Args:
            file_map: File map of the client's torrents

        Returns:
            OrphanStats for the scan
        """
        stats = OrphanStats()
        root = os.path.normcase(os.path.normpath(self.download_path))

        files = []
        folders = []
        for local_path in get_paths_in_folder(self.download_path, True, True):
            if local_path.is_dir:
                if os.path.normcase(os.path.normpath(local_path.path)) == root:
                    continue
                folders.append(local_path)
            else:
                files.append(local_path)

        stats.files_found = len(files)
        stats.folders_found = len(folders)
        self.logger.info(
            f"Retrieved paths from {self.download_path!r}: {len(files)} files / {len(folders)} folders"
        )

        for local_path in files:
            if self._remove(local_path, file_map, stats):
                stats.files_removed += 1
                stats.reclaimed_bytes += local_path.size

        folders.sort(key=lambda p: p.path.count(os.sep), reverse=True)
        for local_path in folders:
            if self._remove(local_path, file_map, stats):
                stats.folders_removed += 1

        self.logger.info("-----")
        self.logger.info(
            f"Removed orphans: {stats.files_removed} files, {stats.folders_removed} folders and "
            f"{stats.failures} failures (reclaimed {format_bytes(stats.reclaimed_bytes)})"
        )
        return stats

    def _remove(self, local_path: LocalPath, file_map: TorrentFileMap, stats: OrphanStats) -> bool:
        if file_map.has_path(local_path.path, self.path_mapping):
            return False

        self.logger.info("-----")
        self.logger.info(f"Removing orphan: {local_path.path!r}")

        if self.dry_run:
            self.logger.warning(f"[DRY RUN] Would remove {local_path.path}")
            return True

        try:
            if local_path.is_dir:
                os.rmdir(local_path.path)
            else:
                os.remove(local_path.path)
        except OSError as e:
            self.logger.error(f"Failed removing orphan {local_path.path!r}: {e}")
            stats.failures += 1
            return False

        self.logger.info("Removed")
        return True
