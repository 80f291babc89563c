"""Data models for torrent queue manager."""

from dataclasses import dataclass, field
from typing import FrozenSet, List, Tuple


# Lowercase substrings of tracker messages that mean the tracker dropped the torrent
UNREGISTERED_STATUSES = (
    'not registered with this tracker',
    'torrent is not authorized for use on this tracker',
    'torrent is not found',
    'torrent not found',
    'torrent has been nuked',
    'torrent does not exist',
    'unregistered torrent',
)

SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = SECONDS_PER_HOUR * 24


@dataclass(frozen=True)
class TorrentRecord:
    """Read-only snapshot of one torrent, taken once per run."""
    hash: str
    name: str
    path: str = ''
    total_bytes: int = 0
    downloaded_bytes: int = 0
    state: str = ''
    files: Tuple[str, ...] = ()
    seeding: bool = False
    ratio: float = 0.0
    added_seconds: int = 0
    seeding_seconds: int = 0
    label: str = ''
    tags: FrozenSet[str] = frozenset()
    seeds: int = 0
    peers: int = 0
    tracker_name: str = ''
    tracker_status: str = ''

    def __post_init__(self):
        # Accept any iterable from adapters and tests, store immutable copies
        object.__setattr__(self, 'files', tuple(self.files))
        object.__setattr__(self, 'tags', frozenset(self.tags))

    @property
    def downloaded(self) -> bool:
        return self.downloaded_bytes >= self.total_bytes

    @property
    def added_hours(self) -> float:
        return self.added_seconds / SECONDS_PER_HOUR

    @property
    def added_days(self) -> float:
        return self.added_seconds / SECONDS_PER_DAY

    @property
    def seeding_hours(self) -> float:
        return self.seeding_seconds / SECONDS_PER_HOUR

    @property
    def seeding_days(self) -> float:
        return self.seeding_seconds / SECONDS_PER_DAY

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def is_unregistered(self) -> bool:
        """Check the tracker status message for a known unregistered phrase."""
        if not self.tracker_status:
            return False

        status = self.tracker_status.lower()
        return any(phrase in status for phrase in UNREGISTERED_STATUSES)

    def to_dict(self) -> dict:
        """Plain representation used for verbose snapshot dumps."""
        return {
            'hash': self.hash,
            'name': self.name,
            'path': self.path,
            'total_bytes': self.total_bytes,
            'downloaded_bytes': self.downloaded_bytes,
            'state': self.state,
            'files': list(self.files),
            'seeding': self.seeding,
            'ratio': self.ratio,
            'added_seconds': self.added_seconds,
            'seeding_seconds': self.seeding_seconds,
            'label': self.label,
            'tags': sorted(self.tags),
            'seeds': self.seeds,
            'peers': self.peers,
            'tracker_name': self.tracker_name,
            'tracker_status': self.tracker_status,
        }


@dataclass
class LabelRule:
    """Set the label `name` on torrents matching every update expression."""
    name: str
    update: List[str] = field(default_factory=list)


@dataclass
class TagRule:
    """Add and/or remove the tag `name` depending on the update expressions."""
    name: str
    mode: str = 'full'
    update: List[str] = field(default_factory=list)


TAG_MODES = ('add', 'remove', 'full')


@dataclass
class FilterConfig:
    """A named rule set from the `filters` section of the configuration."""
    ignore: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    label: List[LabelRule] = field(default_factory=list)
    tag: List[TagRule] = field(default_factory=list)


@dataclass
class RetagInfo:
    """Tags to add to and remove from a single torrent."""
    add: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)  # tags wanted both ways by different rules

    def __bool__(self) -> bool:
        return bool(self.add or self.remove)


@dataclass
class RemoveStats:
    """Statistics from the ignore and remove passes."""
    ignored: int = 0
    ignore_errors: int = 0
    evaluation_errors: int = 0
    not_removed: int = 0
    retained_by_limit: int = 0
    hard_removed: int = 0
    soft_removed: int = 0
    failures: int = 0
    reclaimed_bytes: int = 0
    removed_torrents: List[str] = field(default_factory=list)


@dataclass
class RelabelStats:
    """Statistics from the relabel pass."""
    not_matched: int = 0
    non_unique: int = 0
    relabeled: int = 0
    errors: int = 0
    failures: int = 0


@dataclass
class RetagStats:
    """Statistics from the retag pass."""
    not_matched: int = 0
    retagged: int = 0
    conflicts: int = 0
    errors: int = 0
    failures: int = 0


@dataclass
class OrphanStats:
    """Statistics from an orphan scan."""
    files_found: int = 0
    folders_found: int = 0
    files_removed: int = 0
    folders_removed: int = 0
    failures: int = 0
    reclaimed_bytes: int = 0
