"""Client factory."""

import time
from typing import Callable, Mapping

from tqm.clients.base import TorrentClient
from tqm.clients.deluge import DelugeClient
from tqm.clients.qbittorrent import QBittorrentClient
from tqm.errors import ConfigError


CLIENT_TYPES = {
    'qbittorrent': QBittorrentClient,
    'deluge': DelugeClient,
}


def new_client(client_type: str, name: str, settings: Mapping,
               sleep: Callable[[float], None] = time.sleep) -> TorrentClient:
    """
    Create the adapter for a configured client.

    Args:
        client_type: Client type, case-insensitive (qbittorrent, deluge)
        name: Client name from the configuration
        settings: The client's configuration section
        sleep: Delay function used between remote calls

    Raises:
        ConfigError: If the type is unknown or a setting is missing
    """
    client_class = CLIENT_TYPES.get(str(client_type).lower())
    if client_class is None:
        raise ConfigError(f"Client type not implemented: {client_type!r}")
    return client_class(name, settings, sleep=sleep)
