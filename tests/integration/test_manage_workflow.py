"""End-to-end runs of the tqm commands against in-memory clients."""

import textwrap

import pytest

from tqm import main as tqm_main
from tqm.errors import ConnectError
from tqm.main import main
from tests.helpers import GB, FakeClient, FakeTagClient, make_torrent, snapshot

CONFIG = """
    clients:
      qbt:
        enabled: true
        type: qbittorrent
        filter: default
        download_path: {download_path}
        download_path_mapping:
          /downloads: {download_path}
        free_space_path: /downloads
        url: http://localhost:8080
        user: admin
        password: pw
    filters:
      default:
        ignore:
          - Label startsWith "permaseed"
        remove:
          - Ratio > 4.0 || SeedingDays >= 15.0
        label:
          - name: permaseed-btn
            update:
              - TrackerName == "landof.tv"
        tag:
          - name: low-seed
            mode: full
            update:
              - Seeds <= 3
"""


def queue():
    """
    A client queue covering the interesting cases:

        abc123   ratio 5.0, own files            -> hard remove
        def456   ratio 5.0, shares movie.mkv      -> soft remove
        ghi789   ratio 5.0, shares movie.mkv      -> hard remove (sole owner by then)
        keep01   permaseed label, ratio 9.0       -> ignored
        btn001   landof.tv, ratio 1.0             -> stays, relabel candidate
    """
    return snapshot(
        make_torrent('abc123', ratio=5.0, downloaded_bytes=3 * GB, total_bytes=3 * GB),
        make_torrent('def456', ratio=5.0, files=['/downloads/movie.mkv']),
        make_torrent('ghi789', ratio=5.0, files=['/downloads/movie.mkv']),
        make_torrent('keep01', ratio=9.0, label='permaseed-ptp'),
        make_torrent('btn001', ratio=1.0, tracker_name='landof.tv', seeds=2),
    )


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Config directory and download directory for one run."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr('tqm.main.time.sleep', lambda seconds: None)
    download_path = tmp_path / 'downloads'
    download_path.mkdir()
    (tmp_path / 'config.yaml').write_text(
        textwrap.dedent(CONFIG).format(download_path=download_path)
    )
    return tmp_path


def run_with(monkeypatch, workspace, client, *args):
    monkeypatch.setattr(tqm_main, 'new_client', lambda *a, **kw: client)
    return main(['--config-dir', str(workspace), *args])


class TestManageWorkflow:
    """Test the manage command end to end."""

    def test_manage_with_label(self, workspace, monkeypatch):
        client = FakeTagClient(queue(), free_space=10 * GB)

        assert run_with(monkeypatch, workspace, client, 'manage', 'qbt', '--label') == 0

        assert client.action_calls('delete') == [
            ('delete', 'abc123', True),
            ('delete', 'def456', False),
            ('delete', 'ghi789', True),
        ]
        assert client.free_space_gb == pytest.approx(14.0)
        assert client.action_calls('set_label') == [('set_label', 'btn001', 'permaseed-btn')]
        # keep01 was ignored by the remove pass, so it never reaches the relabel pass
        assert all(call[1] != 'keep01' for call in client.calls)
        assert client.closed

    def test_dry_run_makes_no_calls(self, workspace, monkeypatch):
        """Dry-run logs the same decisions and never calls the client."""
        real = FakeTagClient(queue(), free_space=10 * GB)
        run_with(monkeypatch, workspace, real, 'manage', 'qbt', '--label')
        real_log = (workspace / 'activity.log').read_text()

        dry = FakeTagClient(queue(), free_space=10 * GB)
        assert run_with(monkeypatch, workspace, dry, '--dry-run', 'manage', 'qbt', '--label') == 0
        dry_log = (workspace / 'activity.log').read_text()

        assert dry.calls == []
        for decision in ("Hard removing: 'Torrent abc123'", "Soft removing: 'Torrent def456'",
                         "Hard removing: 'Torrent ghi789'", "Relabeling: 'Torrent btn001'"):
            assert decision in real_log
            assert decision in dry_log
        assert "[DRY RUN]" in dry_log

    def test_snapshot_failure_is_fatal(self, workspace, monkeypatch):
        class BrokenClient(FakeClient):
            def get_torrents(self):
                raise ConnectError("get torrents: timed out")

        client = BrokenClient()
        assert run_with(monkeypatch, workspace, client, 'manage', 'qbt') == 1
        assert client.closed


class TestRetagWorkflow:

    def test_retag(self, workspace, monkeypatch):
        torrents = snapshot(
            make_torrent('low', seeds=1),
            make_torrent('high', seeds=50, tags={'low-seed'}),
            make_torrent('ok', seeds=50),
        )
        client = FakeTagClient(torrents)

        assert run_with(monkeypatch, workspace, client, 'retag', 'qbt') == 0

        assert client.calls == [
            ('create_tags', ['low-seed']),
            ('add_tags', 'low', ['low-seed']),
            ('remove_tags', 'high', ['low-seed']),
        ]


class TestOrphanWorkflow:

    def test_orphan(self, workspace, monkeypatch):
        download_path = workspace / 'downloads'
        (download_path / 'movie.mkv').write_bytes(b'm')
        (download_path / 'Leftover').mkdir()
        (download_path / 'Leftover' / 'old.mkv').write_bytes(b'o')
        client = FakeClient(snapshot(make_torrent('def456', files=['/downloads/movie.mkv'])))

        assert run_with(monkeypatch, workspace, client, 'orphan', 'qbt') == 0

        assert (download_path / 'movie.mkv').exists()
        assert not (download_path / 'Leftover').exists()
        assert client.calls == []
