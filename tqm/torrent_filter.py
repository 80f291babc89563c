"""Per-torrent ignore, remove, relabel and retag decisions."""

import logging
from typing import Dict, List, Optional, Tuple

from tqm.expression import (
    EMPTY_CONTEXT, CompiledExpressionSet, EvalContext, check_all, check_any, compile_filter,
)
from tqm.models import FilterConfig, RetagInfo, TorrentRecord


class TorrentFilter:
    """Apply the compiled rules of one filter to torrents."""

    def __init__(self, expressions: CompiledExpressionSet, name: str = ''):
        """
        Initialize torrent filter.

        Args:
            expressions: Compiled rules of the filter
            name: Filter name (for logging)
        """
        self.expressions = expressions
        self.name = name
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, filter_config: FilterConfig, name: str = '') -> 'TorrentFilter':
        """Compile a filter configuration. Raises CompileError on the first bad rule."""
        return cls(compile_filter(filter_config), name=name)

    def should_ignore(self, torrent: TorrentRecord, context: EvalContext = EMPTY_CONTEXT) -> bool:
        """
        Check if any ignore rule matches.

        Raises:
            EvalError: If a rule fails; the caller must treat the torrent as ignored
        """
        return check_any(self.expressions.ignores, torrent, context)

    def should_remove(self, torrent: TorrentRecord, context: EvalContext = EMPTY_CONTEXT) -> bool:
        """
        Check if any remove rule matches.

        Raises:
            EvalError: If a rule fails; the torrent must not be removed
        """
        return check_any(self.expressions.removes, torrent, context)

    def should_relabel(self, torrent: TorrentRecord,
                       context: EvalContext = EMPTY_CONTEXT) -> Tuple[Optional[str], bool]:
        """
        Find the label a torrent should be moved to.

        The first rule, in configured order, whose update rules all match wins.
        Rules naming the label the torrent already has are skipped.

        Returns:
            (label, True) on a match, (None, False) otherwise

        Raises:
            EvalError: If a rule fails
        """
        for label in self.expressions.labels:
            if torrent.label == label.name:
                continue
            if check_all(label.updates, torrent, context):
                return label.name, True
        return None, False

    def should_retag(self, torrent: TorrentRecord, context: EvalContext = EMPTY_CONTEXT) -> RetagInfo:
        """
        Work out which tags to add to and remove from a torrent.

        Every tag rule contributes independently. A matching `add`/`full` rule
        wants the tag present, a non-matching `remove`/`full` rule wants it
        absent. If two rules want opposite things for the same tag the later
        one wins and the tag is reported in `conflicts`.

        Raises:
            EvalError: If a rule fails; no tag change is made for the torrent
        """
        wanted: Dict[str, bool] = {}
        conflicts: List[str] = []

        for tag in self.expressions.tags:
            match = check_all(tag.updates, torrent, context)

            if match and tag.mode in ('add', 'full'):
                want = True
            elif not match and tag.mode in ('remove', 'full'):
                want = False
            else:
                continue

            if tag.name in wanted and wanted[tag.name] != want:
                self.logger.warning(
                    f"Conflicting tag rules for {tag.name!r} on {torrent.name!r}, "
                    f"applying the later rule (mode={tag.mode}, match={match})"
                )
                if tag.name not in conflicts:
                    conflicts.append(tag.name)
            wanted[tag.name] = want

        info = RetagInfo(conflicts=conflicts)
        for name, want in wanted.items():
            if want and not torrent.has_tag(name):
                info.add.append(name)
            elif not want and torrent.has_tag(name):
                info.remove.append(name)
        return info

    def tags_to_create(self) -> List[str]:
        """Tags that some rule may add, in configured order without duplicates."""
        names = []
        for tag in self.expressions.tags:
            if tag.mode in ('add', 'full') and tag.name not in names:
                names.append(tag.name)
        return names

    @property
    def has_labels(self) -> bool:
        return bool(self.expressions.labels)

    @property
    def has_tags(self) -> bool:
        return bool(self.expressions.tags)
