"""PassThePopcorn torrent lookup."""

from tqm.models import TorrentRecord
from tqm.trackers.base import TrackerApi


API_URL = 'https://passthepopcorn.me/torrents.php'


class PTPApi(TrackerApi):
    name = 'PTP'
    domain = 'passthepopcorn.me'

    def __init__(self, api_user: str, api_key: str, **kwargs):
        super().__init__(**kwargs)
        self.headers = {'ApiUser': api_user, 'ApiKey': api_key}

    def is_unregistered(self, torrent: TorrentRecord) -> bool:
        data = self._request(
            'GET',
            API_URL,
            params={'infohash': torrent.hash},
            headers=self.headers,
        )
        return data.get('Result') == 'ERROR' and data.get('ResultDetails') == 'Unregistered Torrent'
