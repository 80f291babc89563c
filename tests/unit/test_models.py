"""Unit tests for TorrentRecord."""

import dataclasses

import pytest

from tqm.models import RetagInfo, TorrentRecord
from tests.helpers import make_torrent


class TestTorrentRecord:

    def test_collections_are_immutable(self):
        """Files and tags are stored as tuple and frozenset."""
        torrent = TorrentRecord(hash='a', name='a', files=['/x', '/y'], tags=['t1', 't1', 't2'])
        assert torrent.files == ('/x', '/y')
        assert torrent.tags == frozenset({'t1', 't2'})

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            make_torrent().ratio = 2.0

    def test_downloaded(self):
        assert make_torrent(total_bytes=10, downloaded_bytes=10).downloaded is True
        assert make_torrent(total_bytes=10, downloaded_bytes=4).downloaded is False

    def test_derived_times(self):
        torrent = make_torrent(added_seconds=3 * 86400, seeding_seconds=5400)
        assert torrent.added_days == 3
        assert torrent.added_hours == 72
        assert torrent.seeding_hours == 1.5

    @pytest.mark.parametrize('status', [
        'Unregistered torrent',
        'Torrent has been nuked',
        'Failure: torrent is not authorized for use on this tracker',
        'NOT REGISTERED WITH THIS TRACKER',
    ])
    def test_is_unregistered(self, status):
        assert make_torrent(tracker_status=status).is_unregistered() is True

    @pytest.mark.parametrize('status', ['', 'Working', 'timed out'])
    def test_is_registered(self, status):
        assert make_torrent(tracker_status=status).is_unregistered() is False

    def test_to_dict(self):
        data = make_torrent('abc', tags={'b', 'a'}).to_dict()
        assert data['hash'] == 'abc'
        assert data['tags'] == ['a', 'b']
        assert isinstance(data['files'], list)


class TestRetagInfo:

    def test_truthiness_ignores_conflicts(self):
        assert not RetagInfo(conflicts=['x'])
        assert RetagInfo(add=['x'])
