"""Beyond-HD torrent lookup."""

from tqm.models import TorrentRecord
from tqm.trackers.base import TrackerApi


API_URL = 'https://beyond-hd.me/api/torrents'


class BHDApi(TrackerApi):
    name = 'BHD'
    domain = 'beyond-hd.me'

    def __init__(self, api_key: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def is_unregistered(self, torrent: TorrentRecord) -> bool:
        """A torrent BHD returns no search results for is unregistered."""
        data = self._request(
            'POST',
            f"{API_URL}/{self.api_key}",
            json={'info_hash': torrent.hash, 'action': 'search'},
        )
        return int(data.get('total_results', 0)) < 1
