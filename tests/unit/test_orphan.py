"""Unit tests for OrphanCleaner."""

import os

import pytest

from tqm.file_map import TorrentFileMap
from tqm.orphan import OrphanCleaner
from tests.helpers import make_torrent


@pytest.fixture
def download_dir(tmp_path):
    """
    Download directory as seen locally:

        Movie/movie.mkv      owned by a torrent
        Orphan.mkv           orphan file
        OldShow/ep1.mkv      orphan folder with an orphan file
        Empty/               empty orphan folder
    """
    root = tmp_path / 'qbt'
    (root / 'Movie').mkdir(parents=True)
    (root / 'Movie' / 'movie.mkv').write_bytes(b'm' * 100)
    (root / 'Orphan.mkv').write_bytes(b'o' * 40)
    (root / 'OldShow').mkdir()
    (root / 'OldShow' / 'ep1.mkv').write_bytes(b'e' * 60)
    (root / 'Empty').mkdir()
    return root


@pytest.fixture
def file_map():
    """Torrent paths as reported by the client, below /downloads/torrents/qbt."""
    torrent = make_torrent('m1', files=['/downloads/torrents/qbt/Movie/movie.mkv'])
    return TorrentFileMap.from_torrents([torrent])


def cleaner_for(download_dir, **kwargs):
    return OrphanCleaner(str(download_dir), {'/downloads/torrents/qbt': str(download_dir)}, **kwargs)


class TestOrphanCleaner:
    """Test OrphanCleaner.clean()."""

    def test_removes_orphans(self, download_dir, file_map):
        """Unowned files go first, then folders emptied by the scan."""
        stats = cleaner_for(download_dir).clean(file_map)

        assert (download_dir / 'Movie' / 'movie.mkv').exists()
        assert not (download_dir / 'Orphan.mkv').exists()
        assert not (download_dir / 'OldShow').exists()
        assert not (download_dir / 'Empty').exists()
        assert download_dir.exists()

        assert stats.files_found == 3
        assert stats.folders_found == 3
        assert stats.files_removed == 2
        assert stats.folders_removed == 2
        assert stats.reclaimed_bytes == 100
        assert stats.failures == 0

    def test_dry_run_keeps_everything(self, download_dir, file_map):
        stats = cleaner_for(download_dir, dry_run=True).clean(file_map)

        assert (download_dir / 'Orphan.mkv').exists()
        assert (download_dir / 'OldShow' / 'ep1.mkv').exists()
        assert stats.files_removed == 2
        assert stats.folders_removed == 2

    def test_without_mapping_nothing_matches(self, download_dir, file_map):
        """Without the mapping the client paths never contain local paths."""
        stats = OrphanCleaner(str(download_dir), dry_run=True).clean(file_map)
        assert stats.files_removed == 3

    def test_failed_removal_is_counted(self, download_dir, file_map, monkeypatch):
        """A file that cannot be deleted keeps its folder, both count as failures."""
        real_remove = os.remove

        def remove(path):
            if path.endswith('ep1.mkv'):
                raise PermissionError(13, 'Permission denied', path)
            real_remove(path)

        monkeypatch.setattr(os, 'remove', remove)
        stats = cleaner_for(download_dir).clean(file_map)

        assert (download_dir / 'OldShow' / 'ep1.mkv').exists()
        assert stats.failures == 2
        assert stats.files_removed == 1
        assert stats.folders_removed == 1

    def test_missing_download_dir(self, tmp_path, file_map):
        stats = OrphanCleaner(str(tmp_path / 'missing')).clean(file_map)
        assert stats.files_found == 0
        assert stats.folders_found == 0
