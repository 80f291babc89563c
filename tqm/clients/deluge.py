"""Deluge daemon RPC adapter."""

import os
import time
from typing import Callable, Dict, Mapping

from deluge_client import DelugeRPCClient
from deluge_client.client import DelugeClientException

from tqm.clients.base import TorrentClient
from tqm.errors import ActionError, ConfigError, ConnectError
from tqm.models import TorrentRecord


TORRENT_FIELDS = [
    'name', 'save_path', 'total_size', 'total_done', 'state', 'files', 'is_seed',
    'ratio', 'active_time', 'seeding_time', 'label', 'total_seeds', 'total_peers',
    'tracker_host', 'tracker_status',
]

# Transport failures surface as OSError, daemon side failures as DelugeClientException
RPC_ERRORS = (DelugeClientException, OSError)


class DelugeClient(TorrentClient):
    """Torrent client talking to deluged over its RPC port.

    Labels need the Label plugin enabled in Deluge. Tags are not supported.
    """

    type_name = 'Deluge'

    def __init__(self, name: str, settings: Mapping, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize Deluge client.

        Args:
            name: Client name from the configuration
            settings: Client settings (host, port, login, password, optional v2)
            sleep: Delay function used between remote calls

        Raises:
            ConfigError: If a required setting is missing
        """
        super().__init__(name, sleep)

        missing = [key for key in ('host', 'port', 'login', 'password') if settings.get(key) in (None, '')]
        if missing:
            raise ConfigError(f"Client {name!r}: missing required setting(s): {', '.join(missing)}")

        try:
            port = int(settings['port'])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Client {name!r}: port must be a number, got: {settings['port']!r}") from e

        self.host = str(settings['host'])
        self.port = port
        self.v2 = bool(settings.get('v2', False))
        self.client = DelugeRPCClient(
            self.host, self.port, str(settings['login']), str(settings['password']),
            decode_utf8=True,
        )

    def _call(self, method: str, *args):
        """
        Call a daemon RPC method.

        Raises:
            ActionError: On transport errors or an error raised by the daemon
        """
        try:
            return self.client.call(method, *args)
        except RPC_ERRORS as e:
            raise ActionError(f"{method}: {e}") from e

    def connect(self) -> None:
        self.logger.debug(f"Connecting to {self.host}:{self.port} (v2: {self.v2})")
        try:
            self.client.connect()
        except RPC_ERRORS as e:
            raise ConnectError(f"login: {self.host}:{self.port}: {e}") from e

        try:
            plugins = self._call('core.get_enabled_plugins') or []
            if 'Label' not in plugins:
                raise ConnectError("get label plugin: Label plugin is not enabled")
            version = self._call('daemon.info')
        except ActionError as e:
            raise ConnectError(f"Failed to connect to Deluge at {self.host}:{self.port}: {e}") from e

        self.logger.debug(f"Daemon version: {version}")
        self.logger.info(f"Successfully connected to Deluge at {self.host}:{self.port}")

    def close(self) -> None:
        if self.client.connected:
            self.client.disconnect()

    def get_torrents(self) -> Dict[str, TorrentRecord]:
        try:
            result = self._call('core.get_torrents_status', {}, TORRENT_FIELDS) or {}
        except ActionError as e:
            raise ConnectError(f"get torrents: {e}") from e
        self.logger.debug(f"Retrieved {len(result)} torrents from Deluge")

        return {torrent_hash: self._build_record(torrent_hash, status)
                for torrent_hash, status in result.items()}

    @staticmethod
    def _build_record(torrent_hash: str, status: Mapping) -> TorrentRecord:
        save_path = status.get('save_path', '')
        return TorrentRecord(
            hash=torrent_hash,
            name=status.get('name', ''),
            path=save_path,
            total_bytes=int(status.get('total_size', 0)),
            downloaded_bytes=int(status.get('total_done', 0)),
            state=status.get('state', ''),
            files=[os.path.join(save_path, f.get('path', '')) for f in status.get('files', [])],
            seeding=bool(status.get('is_seed', False)),
            ratio=float(status.get('ratio', 0.0)),
            added_seconds=int(status.get('active_time', 0)),
            seeding_seconds=int(status.get('seeding_time', 0)),
            label=status.get('label', '') or '',
            seeds=int(status.get('total_seeds', 0)),
            peers=int(status.get('total_peers', 0)),
            tracker_name=status.get('tracker_host', '') or '',
            tracker_status=status.get('tracker_status', '') or '',
        )

    # Deluge 2 takes a single id in pause_torrent, the list form moved to pause_torrents

    def _pause(self, torrent_hash: str) -> None:
        self._call('core.pause_torrents' if self.v2 else 'core.pause_torrent', [torrent_hash])

    def _resume(self, torrent_hash: str) -> None:
        self._call('core.resume_torrents' if self.v2 else 'core.resume_torrent', [torrent_hash])

    def _reannounce(self, torrent_hash: str) -> None:
        self._call('core.force_reannounce', [torrent_hash])

    def _delete(self, torrent_hash: str, delete_data: bool) -> None:
        if not self._call('core.remove_torrent', torrent_hash, delete_data):
            raise ActionError("client refused removal")

    def set_label(self, torrent_hash: str, label: str) -> None:
        try:
            self._call('label.set_torrent', torrent_hash, label)
        except ActionError as e:
            raise ActionError(f"set torrent label {label!r}: {e}") from e

    def _fetch_free_space(self, path: str) -> int:
        return int(self._call('core.get_free_space', path))
