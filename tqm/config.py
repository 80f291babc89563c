"""Configuration management for tqm."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from tqm.errors import ConfigError
from tqm.models import TAG_MODES, FilterConfig, LabelRule, TagRule


CONFIG_FILE = 'config.yaml'
LOG_FILE = 'activity.log'
LOG_MAX_FILES = 5

DEFAULT_CONFIG = {
    'clients': {
        'qbt': {
            'enabled': False,
            'type': 'qbittorrent',
            'filter': 'default',
            'download_path': '/mnt/local/downloads/torrents/qbittorrent',
            'download_path_mapping': {
                '/downloads/torrents/qbittorrent': '/mnt/local/downloads/torrents/qbittorrent',
            },
            'free_space_path': '/mnt/local/downloads',
            'url': 'http://localhost:8080',
            'user': 'admin',
            'password': '${QBT_PASSWORD}',
        },
        'deluge': {
            'enabled': False,
            'type': 'deluge',
            'filter': 'default',
            'download_path': '/mnt/local/downloads/torrents/deluge',
            'download_path_mapping': {
                '/downloads/torrents/deluge': '/mnt/local/downloads/torrents/deluge',
            },
            'host': 'localhost',
            'port': 58846,
            'login': 'localclient',
            'password': '${DELUGE_PASSWORD}',
            'v2': True,
        },
    },
    'filters': {
        'default': {
            'ignore': ['Label startsWith "permaseed"'],
            'remove': ['Ratio > 4.0 || SeedingDays >= 15.0'],
        },
    },
    'trackers': {},
    'torrent_retention_limit': 0,
}


def default_config_dir(config_file: str = CONFIG_FILE) -> Path:
    """
    Directory holding the configuration, log and lock files.

    TQM_CONFIG_DIR wins, then the working directory if it holds a config
    file, then ~/.config/tqm.
    """
    env_dir = os.getenv('TQM_CONFIG_DIR')
    if env_dir:
        return Path(env_dir)

    cwd = Path.cwd()
    if (cwd / config_file).exists():
        return cwd

    return Path.home() / '.config' / 'tqm'


def _expand_env(value: Any) -> Any:
    """Expand ${VAR} references in strings, recursively."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, Mapping):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    return value


def _parse_retention_limit(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where} must be an integer, got: {value!r}")
    if value < 0:
        raise ConfigError(f"{where} must be >= 0, got: {value}")
    return value


def _named_section(data: Mapping, key: str) -> Dict[str, Any]:
    """Read a mapping of user-chosen names, such as `clients` or `filters`.

    YAML reads unquoted keys like `off`, `yes` or `1` as bool or int, which
    would silently break name lookups, so such keys are rejected.
    """
    section = data.get(key) or {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"'{key}' must be a mapping")

    for name in section:
        if not isinstance(name, str):
            raise ConfigError(
                f"Name {name!r} in '{key}' is not a string, YAML read it as "
                f"{type(name).__name__}. Quote it in the configuration file."
            )
    return dict(section)


def _string_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{where} must be a list of strings")
    return list(value)


def parse_filter(name: str, data: Any) -> FilterConfig:
    """
    Build a FilterConfig from its YAML mapping.

    Raises:
        ConfigError: If the filter is not shaped as expected
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Filter {name!r} must be a mapping")

    unknown = set(data) - {'ignore', 'remove', 'label', 'tag'}
    if unknown:
        raise ConfigError(f"Filter {name!r} has unknown section(s): {', '.join(sorted(unknown))}")

    labels = []
    for rule in data.get('label') or []:
        if not isinstance(rule, Mapping) or not rule.get('name'):
            raise ConfigError(f"Filter {name!r}: label rules need a name, got: {rule!r}")
        update = _string_list(rule.get('update'), f"Filter {name!r} label {rule['name']!r} update")
        if not update:
            raise ConfigError(f"Filter {name!r}: label {rule['name']!r} has no update rules")
        labels.append(LabelRule(name=str(rule['name']), update=update))

    tags = []
    for rule in data.get('tag') or []:
        if not isinstance(rule, Mapping) or not rule.get('name'):
            raise ConfigError(f"Filter {name!r}: tag rules need a name, got: {rule!r}")
        mode = str(rule.get('mode', 'full')).lower()
        if mode not in TAG_MODES:
            raise ConfigError(
                f"Filter {name!r}: tag {rule['name']!r} has unknown mode {mode!r} "
                f"(expected one of: {', '.join(TAG_MODES)})"
            )
        update = _string_list(rule.get('update'), f"Filter {name!r} tag {rule['name']!r} update")
        if not update:
            raise ConfigError(f"Filter {name!r}: tag {rule['name']!r} has no update rules")
        tags.append(TagRule(name=str(rule['name']), mode=mode, update=update))

    return FilterConfig(
        ignore=_string_list(data.get('ignore'), f"Filter {name!r} ignore"),
        remove=_string_list(data.get('remove'), f"Filter {name!r} remove"),
        label=labels,
        tag=tags,
    )


@dataclass
class ClientConfig:
    """One entry of the `clients` section, validated."""
    name: str
    type: str
    filter: str
    download_path: Optional[str] = None
    download_path_mapping: Dict[str, str] = field(default_factory=dict)
    free_space_path: Optional[str] = None
    torrent_retention_limit: Optional[int] = None
    settings: Dict[str, Any] = field(default_factory=dict)


class Config:
    """Application configuration loaded from the YAML config file."""

    def __init__(self, config_file: str):
        """
        Load and validate configuration.

        Args:
            config_file: Path to config.yaml

        Raises:
            ConfigError: If the file is missing (a default one is written) or invalid
        """
        self.config_file = Path(config_file)

        load_dotenv()
        env_file = self.config_file.parent / '.env'
        if env_file.exists():
            load_dotenv(env_file)

        data = self._load()

        self.clients = _named_section(data, 'clients')
        filters = _named_section(data, 'filters')
        self.filters = {name: parse_filter(name, value) for name, value in filters.items()}

        self.trackers = data.get('trackers') or {}
        if not isinstance(self.trackers, Mapping):
            raise ConfigError("'trackers' must be a mapping")

        self.torrent_retention_limit = _parse_retention_limit(
            data.get('torrent_retention_limit'), 'torrent_retention_limit'
        )

    def _load(self) -> dict:
        if not self.config_file.exists():
            self.write_default()
            raise ConfigError(
                f"Configuration file not found, a default one was written to {self.config_file}. "
                f"Edit it and run again."
            )

        try:
            with open(self.config_file) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed parsing {self.config_file}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed reading {self.config_file}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{self.config_file} must contain a mapping")
        return data

    def write_default(self) -> None:
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(DEFAULT_CONFIG, f, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Cannot write default configuration to {self.config_file}: {e}") from e

    def get_filter(self, name: str) -> FilterConfig:
        if name not in self.filters:
            raise ConfigError(f"Failed finding configuration of filter: {name!r}")
        return self.filters[name]

    def get_client(self, name: str) -> ClientConfig:
        """
        Validate and return a client's configuration.

        ${VAR} references in the client's settings are expanded from the
        environment.

        Raises:
            ConfigError: If the client is unknown, disabled or misconfigured
        """
        if name not in self.clients:
            raise ConfigError(f"No client configuration found for: {name!r}")

        raw = self.clients[name]
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Client {name!r} configuration must be a mapping")
        settings = _expand_env(dict(raw))

        if 'enabled' not in settings:
            raise ConfigError(f"No enabled setting found in client configuration: {name!r}")
        if settings['enabled'] is not True:
            raise ConfigError(f"Client {name!r} is not enabled")

        client_type = settings.get('type')
        if not client_type or not isinstance(client_type, str):
            raise ConfigError(f"No type setting found in client configuration: {name!r}")

        filter_name = settings.get('filter')
        if not filter_name or not isinstance(filter_name, str):
            raise ConfigError(f"No filter setting found in client configuration: {name!r}")
        self.get_filter(filter_name)

        mapping = settings.get('download_path_mapping') or {}
        if not isinstance(mapping, Mapping) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in mapping.items()):
            raise ConfigError(f"Client {name!r}: download_path_mapping must map strings to strings")

        for key in ('download_path', 'free_space_path'):
            if settings.get(key) is not None and not isinstance(settings[key], str):
                raise ConfigError(f"Client {name!r}: {key} must be a string")

        retention = settings.get('torrent_retention_limit')
        if retention is not None:
            retention = _parse_retention_limit(retention, f"Client {name!r} torrent_retention_limit")

        return ClientConfig(
            name=name,
            type=client_type.lower(),
            filter=filter_name,
            download_path=settings.get('download_path'),
            download_path_mapping=dict(mapping),
            free_space_path=settings.get('free_space_path'),
            torrent_retention_limit=retention,
            settings=settings,
        )

    def retention_limit_for(self, client: ClientConfig) -> int:
        """Per-client retention limit if set, else the global one."""
        if client.torrent_retention_limit is not None:
            return client.torrent_retention_limit
        return self.torrent_retention_limit

    def __str__(self) -> str:
        lines = [
            f"Config file: {self.config_file}",
            f"Clients: {', '.join(self.clients) or '-'}",
            f"Filters: {', '.join(self.filters) or '-'}",
            f"Trackers: {', '.join(self.trackers) or '-'}",
            f"Torrent retention limit: {self.torrent_retention_limit or 'none'}",
        ]
        return '\n'.join(lines)
