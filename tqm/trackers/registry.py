"""Routing of unregistered lookups to the configured tracker APIs."""

import logging
from typing import Dict, List, Mapping, Optional

from tqm.errors import ConfigError, TrackerError
from tqm.models import TorrentRecord
from tqm.trackers.base import TrackerApi
from tqm.trackers.bhd import BHDApi
from tqm.trackers.ptp import PTPApi


class TrackerRegistry:
    """The tracker APIs enabled in the configuration."""

    def __init__(self, apis: Optional[List[TrackerApi]] = None):
        self.apis = list(apis or [])
        self._cache: Dict[str, bool] = {}
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, trackers: Optional[Mapping]) -> 'TrackerRegistry':
        """
        Build the registry from the `trackers` configuration section.

        A tracker is enabled once its credentials are set.

        Raises:
            ConfigError: If the section is not a mapping
        """
        trackers = trackers or {}
        if not isinstance(trackers, Mapping):
            raise ConfigError("'trackers' must be a mapping")

        apis = []
        bhd = trackers.get('bhd') or {}
        if bhd.get('api_key'):
            apis.append(BHDApi(bhd['api_key']))

        ptp = trackers.get('ptp') or {}
        if ptp.get('api_user') and ptp.get('api_key'):
            apis.append(PTPApi(ptp['api_user'], ptp['api_key']))

        return cls(apis)

    def get(self, host: str) -> Optional[TrackerApi]:
        for api in self.apis:
            if api.check(host):
                return api
        return None

    def is_unregistered(self, torrent: TorrentRecord) -> bool:
        """
        Ask the torrent's tracker API whether it is unregistered.

        Torrents on trackers without a configured API, and failed lookups,
        count as registered. Answers are cached per torrent for the run.
        """
        if torrent.hash in self._cache:
            return self._cache[torrent.hash]

        api = self.get(torrent.tracker_name)
        if api is None:
            return False

        try:
            result = api.is_unregistered(torrent)
        except TrackerError as e:
            self.logger.warning(f"Failed checking {torrent.name} with {api.name} API: {e}")
            return False

        self._cache[torrent.hash] = result
        if result:
            self.logger.debug(f"{api.name} reports {torrent.name} as unregistered")
        return result

    def __len__(self) -> int:
        return len(self.apis)
