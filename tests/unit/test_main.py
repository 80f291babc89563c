"""Unit tests for the command line entry point."""

import fcntl
import textwrap

import pytest

from tqm import main as tqm_main
from tqm.main import build_parser, main
from tests.helpers import FakeClient, FakeTagClient, make_torrent, snapshot

CONFIG = """
    clients:
      qbt:
        enabled: true
        type: qbittorrent
        filter: default
        url: http://localhost:8080
        user: admin
        password: pw
    filters:
      default:
        remove:
          - Ratio > 4.0
"""


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / 'config.yaml').write_text(textwrap.dedent(CONFIG))
    return tmp_path


@pytest.fixture
def use_client(monkeypatch):
    """Make new_client() hand out the given fake."""
    monkeypatch.setattr('tqm.main.time.sleep', lambda seconds: None)

    def install(client):
        monkeypatch.setattr(tqm_main, 'new_client', lambda *args, **kwargs: client)
        return client
    return install


def run(config_dir, *args):
    return main(['--config-dir', str(config_dir), *args])


class TestParser:
    """Test build_parser()."""

    def test_manage_options(self):
        args = build_parser().parse_args(['-vv', '--dry-run', 'manage', 'qbt', '--label'])
        assert args.command == 'manage'
        assert args.client == 'qbt'
        assert args.label is True
        assert args.verbose == 2
        assert args.dry_run is True

    def test_retag_filter(self):
        args = build_parser().parse_args(['retag', 'qbt', '--filter', 'tags'])
        assert args.filter == 'tags'

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    """Test exit codes of main()."""

    def test_update(self, tmp_path):
        assert main(['--config-dir', str(tmp_path), 'update']) == 0
        assert not (tmp_path / 'config.yaml').exists()

    def test_missing_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert main(['--config-dir', str(tmp_path / 'conf'), 'manage', 'qbt']) == 1
        assert (tmp_path / 'conf' / 'config.yaml').exists()

    def test_unknown_client(self, config_dir):
        assert run(config_dir, 'manage', 'nope') == 1

    def test_manage(self, config_dir, use_client):
        client = use_client(FakeClient(snapshot(make_torrent('abc123', ratio=5.0))))

        assert run(config_dir, 'manage', 'qbt') == 0

        assert client.connected and client.closed
        assert client.action_calls('delete') == [('delete', 'abc123', True)]

    def test_log_file_written(self, config_dir, use_client):
        use_client(FakeClient(snapshot(make_torrent('abc123', ratio=5.0))))
        run(config_dir, '-vv', 'manage', 'qbt')
        text = (config_dir / 'activity.log').read_text()
        assert "Hard removing: 'Torrent abc123'" in text
        assert '"hash": "abc123"' in text

    def test_connect_failure(self, config_dir, use_client):
        client = use_client(FakeClient(fail_connect=True))
        assert run(config_dir, 'manage', 'qbt') == 1
        assert client.calls == []

    def test_compile_error_before_connect(self, config_dir, use_client):
        (config_dir / 'config.yaml').write_text(
            textwrap.dedent(CONFIG).replace('Ratio > 4.0', 'Ratio >')
        )
        client = use_client(FakeClient())
        assert run(config_dir, 'manage', 'qbt') == 1
        assert not client.connected

    def test_retag_needs_tag_client(self, config_dir, use_client):
        client = use_client(FakeClient())
        assert run(config_dir, 'retag', 'qbt') == 1
        assert not client.connected

    def test_retag_without_tag_rules(self, config_dir, use_client):
        client = use_client(FakeTagClient(snapshot(make_torrent('abc123', seeds=1))))
        assert run(config_dir, 'retag', 'qbt') == 0
        assert client.calls == []
        assert client.closed

    def test_label_without_label_rules(self, config_dir, use_client):
        client = use_client(FakeClient(snapshot(make_torrent('abc123'))))
        assert run(config_dir, 'label', 'qbt') == 0
        assert client.calls == []

    def test_retag_unknown_filter(self, config_dir, use_client):
        use_client(FakeTagClient())
        assert run(config_dir, 'retag', 'qbt', '--filter', 'missing') == 1

    def test_orphan_needs_download_path(self, config_dir, use_client):
        use_client(FakeClient())
        assert run(config_dir, 'orphan', 'qbt') == 1

    def test_second_run_is_skipped(self, config_dir, use_client):
        """A run against a locked client exits cleanly without touching it."""
        client = use_client(FakeClient(snapshot(make_torrent('abc123', ratio=5.0))))

        with open(config_dir / '.qbt.lock', 'w') as held:
            fcntl.flock(held.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            assert run(config_dir, 'manage', 'qbt') == 0

        assert not client.connected
        assert client.calls == []
