"""qBittorrent Web API adapter."""

import os
import time
from typing import Callable, Dict, Iterable, List, Mapping

import qbittorrentapi
from qbittorrentapi import Client

from tqm.clients.base import TagClient, parse_tracker_domain
from tqm.errors import ActionError, ConfigError, ConnectError
from tqm.models import TorrentRecord


MIN_API_VERSION = (2, 2)

SEEDING_STATES = ('uploading', 'stalledup')

# Pseudo trackers are listed as "** [DHT] **", "** [PeX] **" and "** [LSD] **"
PSEUDO_TRACKERS = ('[DHT]', '[PeX]', '[LSD]')


def parse_api_version(version: str) -> tuple:
    """Turn "2.8.3" into (2, 8, 3). Unparseable parts count as 0."""
    parts = []
    for part in str(version).strip().split('.'):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    return tuple(parts)


def parse_tags(tags: str) -> List[str]:
    """qBittorrent reports tags as one comma separated string."""
    return [tag.strip() for tag in (tags or '').split(',') if tag.strip()]


class QBittorrentClient(TagClient):
    """Torrent client backed by qbittorrent-api."""

    type_name = 'qBittorrent'

    def __init__(self, name: str, settings: Mapping, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize qBittorrent client.

        Args:
            name: Client name from the configuration
            settings: Client settings (url, user, password, optional verify_ssl)
            sleep: Delay function used between remote calls

        Raises:
            ConfigError: If a required setting is missing
        """
        super().__init__(name, sleep)

        missing = [key for key in ('url', 'user', 'password') if not settings.get(key)]
        if missing:
            raise ConfigError(f"Client {name!r}: missing required setting(s): {', '.join(missing)}")

        self.url = settings['url']
        self.client = Client(
            host=self.url,
            username=settings['user'],
            password=settings['password'],
            VERIFY_WEBUI_CERTIFICATE=bool(settings.get('verify_ssl', True)),
        )

    def connect(self) -> None:
        try:
            self.client.auth_log_in()
            api_version = self.client.app_web_api_version()
        except qbittorrentapi.LoginFailed as e:
            raise ConnectError(f"Failed to login to qBittorrent at {self.url}: {e}") from e
        except qbittorrentapi.APIError as e:
            raise ConnectError(f"Failed to connect to qBittorrent at {self.url}: {e}") from e

        if parse_api_version(api_version)[:2] < MIN_API_VERSION:
            raise ConnectError(f"Unsupported qBittorrent Web API version: {api_version}")

        self.logger.debug(f"qBittorrent Web API version: {api_version}")
        self.logger.info(f"Successfully connected to qBittorrent at {self.url}")

    def close(self) -> None:
        try:
            self.client.auth_log_out()
            self.logger.debug("Logged out from qBittorrent")
        except qbittorrentapi.APIError as e:
            self.logger.warning(f"Error during logout: {e}")

    def get_torrents(self) -> Dict[str, TorrentRecord]:
        """
        Fetch every torrent together with its properties, trackers and files.

        Returns:
            Snapshot keyed by torrent hash

        Raises:
            ConnectError: If any request fails
        """
        try:
            torrents = self.client.torrents_info()
        except qbittorrentapi.APIError as e:
            raise ConnectError(f"get torrents: {e}") from e
        self.logger.debug(f"Retrieved {len(torrents)} torrents from qBittorrent")

        now = time.time()
        snapshot = {}
        for torrent in torrents:
            try:
                properties = self.client.torrents_properties(torrent_hash=torrent['hash'])
                trackers = self.client.torrents_trackers(torrent_hash=torrent['hash'])
                files = self.client.torrents_files(torrent_hash=torrent['hash'])
            except qbittorrentapi.APIError as e:
                raise ConnectError(f"get torrent details: {torrent['hash']}: {e}") from e

            snapshot[torrent['hash']] = self._build_record(torrent, properties, trackers, files, now)

        return snapshot

    @staticmethod
    def _tracker_details(trackers) -> tuple:
        """Name and message of the first real tracker."""
        for tracker in trackers:
            url = tracker.get('url', '')
            if any(pseudo in url for pseudo in PSEUDO_TRACKERS):
                continue
            return parse_tracker_domain(url), tracker.get('msg', '') or ''
        return '', ''

    def _build_record(self, torrent, properties, trackers, files, now: float) -> TorrentRecord:
        save_path = properties.get('save_path', '')
        total_bytes = int(torrent.get('size', 0))
        downloaded_bytes = int(properties.get('total_downloaded', 0))
        tracker_name, tracker_status = self._tracker_details(trackers)
        state = torrent.get('state', '')

        return TorrentRecord(
            hash=torrent['hash'],
            name=torrent.get('name', ''),
            path=save_path,
            total_bytes=total_bytes,
            downloaded_bytes=downloaded_bytes,
            state=state,
            files=[os.path.join(save_path, f.get('name', '')) for f in files],
            seeding=state.lower() in SEEDING_STATES,
            ratio=float(properties.get('share_ratio', 0.0)),
            added_seconds=max(int(now - properties.get('addition_date', now)), 0),
            seeding_seconds=int(properties.get('seeding_time', 0)),
            label=torrent.get('category', '') or '',
            tags=parse_tags(torrent.get('tags', '')),
            seeds=int(properties.get('seeds_total', 0)),
            peers=int(properties.get('peers_total', 0)),
            tracker_name=tracker_name,
            tracker_status=tracker_status,
        )

    def _call(self, description: str, method, **kwargs) -> None:
        try:
            method(**kwargs)
        except qbittorrentapi.APIError as e:
            raise ActionError(f"{description}: {e}") from e

    def _pause(self, torrent_hash: str) -> None:
        self._call('pause', self.client.torrents_pause, torrent_hashes=torrent_hash)
        self.logger.debug(f"Paused torrent: {torrent_hash}")

    def _resume(self, torrent_hash: str) -> None:
        self._call('resume', self.client.torrents_resume, torrent_hashes=torrent_hash)
        self.logger.debug(f"Resumed torrent: {torrent_hash}")

    def _reannounce(self, torrent_hash: str) -> None:
        self._call('re-announce', self.client.torrents_reannounce, torrent_hashes=torrent_hash)
        self.logger.debug(f"Re-announced torrent: {torrent_hash}")

    def _delete(self, torrent_hash: str, delete_data: bool) -> None:
        self._call('delete', self.client.torrents_delete,
                   torrent_hashes=torrent_hash, delete_files=delete_data)
        self.logger.debug(f"Deleted torrent {torrent_hash} (delete_files={delete_data})")

    def set_label(self, torrent_hash: str, label: str) -> None:
        self._call(f"set torrent label {label!r}", self.client.torrents_set_category,
                   category=label, torrent_hashes=torrent_hash)

    def _fetch_free_space(self, path: str) -> int:
        try:
            data = self.client.sync_maindata()
        except qbittorrentapi.APIError as e:
            raise ActionError(f"get main data: {e}") from e
        return int(data['server_state']['free_space_on_disk'])

    def add_tags(self, torrent_hashes: Iterable[str], tags: List[str]) -> None:
        self._call('add tags', self.client.torrents_add_tags,
                   tags=list(tags), torrent_hashes=list(torrent_hashes))

    def remove_tags(self, torrent_hashes: Iterable[str], tags: List[str]) -> None:
        self._call('remove tags', self.client.torrents_remove_tags,
                   tags=list(tags), torrent_hashes=list(torrent_hashes))

    def create_tags(self, tags: List[str]) -> None:
        self._call('create tags', self.client.torrents_create_tags, tags=list(tags))

    def delete_tags(self, tags: List[str]) -> None:
        self._call('delete tags', self.client.torrents_delete_tags, tags=list(tags))
