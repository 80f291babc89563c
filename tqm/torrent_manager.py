"""Remove, relabel and retag passes over a client snapshot."""

import dataclasses
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from tqm.clients.base import TagClient, TorrentClient
from tqm.errors import ActionError, EvalError
from tqm.expression import EvalContext
from tqm.file_map import TorrentFileMap
from tqm.models import RelabelStats, RemoveStats, RetagStats, TorrentRecord
from tqm.torrent_filter import TorrentFilter
from tqm.trackers.registry import TrackerRegistry
from tqm.utils.format import format_bytes


class TorrentManager:
    """Run the maintenance passes for one client.

    Every pass works on the same snapshot dict (hash -> record) and file map.
    Torrents that are removed, or that fail an action, are dropped from the
    snapshot so later passes never touch them. Torrents that are ignored or
    fail to evaluate are dropped from the snapshot but stay in the file map,
    because their data is still on disk.
    """

    def __init__(self, client: TorrentClient, torrent_filter: TorrentFilter,
                 dry_run: bool = False, retention_limit: int = 0,
                 trackers: Optional[TrackerRegistry] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize torrent manager.

        Args:
            client: Connected torrent client
            torrent_filter: Compiled filter of the client
            dry_run: Evaluate and log only, never call the client
            retention_limit: Keep at most this many torrents when removing (0 = no limit)
            trackers: Tracker APIs used by IsUnregistered()
            sleep: Delay function used between actions
        """
        self.client = client
        self.filter = torrent_filter
        self.dry_run = dry_run
        self.retention_limit = retention_limit
        self.trackers = trackers
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

    def context(self) -> EvalContext:
        """Evaluation context reflecting the client's current free space."""
        return EvalContext(
            free_space_gb=self.client.free_space_gb,
            free_space_set=self.client.free_space_set,
            unregistered=self.trackers.is_unregistered if self.trackers is not None else None,
        )

    def _describe(self, torrent: TorrentRecord) -> str:
        return (
            f"Ratio: {torrent.ratio:.3f} / Seed days: {torrent.seeding_days:.3f} / "
            f"Seeds: {torrent.seeds} / Label: {torrent.label} / Tracker: {torrent.tracker_name} / "
            f"Tracker Status: {torrent.tracker_status!r}"
        )

    # --- Remove -------------------------------------------------------------

    def remove_eligible(self, torrents: Dict[str, TorrentRecord],
                        file_map: TorrentFileMap) -> RemoveStats:
        """
        Drop ignored torrents, then remove those matching a remove rule.

        Torrents with unique files are hard removed (data deleted), the others
        soft removed so torrents sharing their files keep working.

        Args:
            torrents: Snapshot, updated in place
            file_map: File map of the full snapshot, updated in place

        Returns:
            RemoveStats for the pass
        """
        stats = RemoveStats()
        self._ignore_pass(torrents, stats)

        if self.retention_limit:
            eligible = self._evaluate_removals(torrents, stats)
            kept = len(torrents) - len(eligible)
            selected, retained = self.select_for_removal(eligible, kept)
            for torrent in retained:
                self.logger.info(
                    f"Retaining {torrent.name!r} (retention limit {self.retention_limit}, "
                    f"added {torrent.added_days:.1f} days ago)"
                )
            stats.retained_by_limit = len(retained)
            for torrent in selected:
                self._remove_torrent(torrent, torrents, file_map, stats)
        else:
            # Evaluate one at a time so rules see the space freed by earlier removals
            for torrent in list(torrents.values()):
                if self._should_remove(torrent, torrents, stats):
                    self._remove_torrent(torrent, torrents, file_map, stats)

        self.logger.info("-----")
        self.logger.info(f"Ignored torrents: {stats.ignored}")
        if stats.ignore_errors or stats.evaluation_errors:
            self.logger.info(
                f"Evaluation errors: {stats.ignore_errors} ignore, {stats.evaluation_errors} remove"
            )
        if stats.retained_by_limit:
            self.logger.info(f"Retained by limit: {stats.retained_by_limit}")
        self.logger.info(
            f"Removed torrents: {stats.hard_removed} hard, {stats.soft_removed} soft and "
            f"{stats.failures} failures (reclaimed {format_bytes(stats.reclaimed_bytes)})"
        )
        return stats

    def _ignore_pass(self, torrents: Dict[str, TorrentRecord], stats: RemoveStats) -> None:
        for torrent_hash, torrent in list(torrents.items()):
            try:
                ignore = self.filter.should_ignore(torrent, self.context())
            except EvalError as e:
                self.logger.error(f"Failed determining whether to ignore {torrent.name!r}: {e}")
                del torrents[torrent_hash]
                stats.ignore_errors += 1
                continue

            if ignore:
                self.logger.debug(f"Ignoring torrent {torrent_hash}: {torrent.name}")
                del torrents[torrent_hash]
                stats.ignored += 1

    def _should_remove(self, torrent: TorrentRecord, torrents: Dict[str, TorrentRecord],
                       stats: RemoveStats) -> bool:
        try:
            remove = self.filter.should_remove(torrent, self.context())
        except EvalError as e:
            self.logger.error(f"Failed determining whether to remove {torrent.name!r}: {e}")
            del torrents[torrent.hash]
            stats.evaluation_errors += 1
            return False

        if not remove:
            self.logger.debug(f"Not removing {torrent.hash}: {torrent.name}")
            stats.not_removed += 1
        return remove

    def _evaluate_removals(self, torrents: Dict[str, TorrentRecord],
                           stats: RemoveStats) -> List[TorrentRecord]:
        return [torrent for torrent in list(torrents.values())
                if self._should_remove(torrent, torrents, stats)]

    def select_for_removal(self, eligible: List[TorrentRecord],
                           kept: int) -> Tuple[List[TorrentRecord], List[TorrentRecord]]:
        """
        Apply the retention limit to the torrents eligible for removal.

        Oldest added torrents are removed first. Only as many are removed as
        needed to bring the client down to the limit. When the torrents that
        are kept anyway already reach the limit, nothing is removed.

        Args:
            eligible: Torrents matching a remove rule
            kept: Torrents in the working set that will stay

        Returns:
            (torrents to remove, torrents retained)
        """
        if not self.retention_limit:
            return list(eligible), []

        ordered = sorted(eligible, key=lambda t: t.added_seconds, reverse=True)
        if kept >= self.retention_limit:
            return [], ordered

        room = self.retention_limit - kept
        remove_count = max(len(ordered) - room, 0)
        return ordered[:remove_count], ordered[remove_count:]

    def _remove_torrent(self, torrent: TorrentRecord, torrents: Dict[str, TorrentRecord],
                        file_map: TorrentFileMap, stats: RemoveStats) -> None:
        # decided before the torrent leaves the file map
        unique = file_map.is_unique(torrent)
        mode = 'Hard' if unique else 'Soft'

        self.logger.info("-----")
        if self.client.free_space_set:
            self.logger.info(
                f"{mode} removing: {torrent.name!r} - {format_bytes(torrent.downloaded_bytes)} - "
                f"{self.client.free_space_gb:.2f} GB"
            )
        else:
            self.logger.info(f"{mode} removing: {torrent.name!r} - {format_bytes(torrent.downloaded_bytes)}")
        self.logger.info(self._describe(torrent))

        if self.dry_run:
            self.logger.warning(f"[DRY RUN] Would remove torrent {torrent.hash} (delete_data={unique})")
        else:
            try:
                self.client.remove_torrent(torrent.hash, delete_data=unique)
            except ActionError as e:
                self.logger.error(f"Failed removing torrent {torrent.name!r}: {e}")
                # data is still on disk, keep it in the file map
                del torrents[torrent.hash]
                stats.failures += 1
                return
            self.logger.info("Removed")

        if unique:
            if self.client.free_space_set:
                self.client.add_free_space(torrent.downloaded_bytes)
                self.logger.debug(f"New free space: {self.client.free_space_gb:.2f} GB")
            stats.reclaimed_bytes += torrent.downloaded_bytes
            stats.hard_removed += 1
            if not self.dry_run:
                self.sleep(1)
        else:
            stats.soft_removed += 1

        stats.removed_torrents.append(torrent.name)
        file_map.remove(torrent)
        del torrents[torrent.hash]

    # --- Relabel ------------------------------------------------------------

    def relabel_eligible(self, torrents: Dict[str, TorrentRecord],
                         file_map: TorrentFileMap) -> RelabelStats:
        """
        Move torrents to the label of the first matching label rule.

        Torrents sharing files with another torrent are skipped, a label change
        may move their data.

        Args:
            torrents: Snapshot, updated in place
            file_map: Current file map

        Returns:
            RelabelStats for the pass
        """
        stats = RelabelStats()

        for torrent_hash, torrent in list(torrents.items()):
            if not file_map.is_unique(torrent):
                self.logger.warning(f"Skipping non unique torrent: {torrent_hash}: {torrent.name}")
                stats.non_unique += 1
                continue

            try:
                label, relabel = self.filter.should_relabel(torrent, self.context())
            except EvalError as e:
                self.logger.error(f"Failed determining whether to relabel {torrent.name!r}: {e}")
                stats.errors += 1
                continue

            if not relabel:
                self.logger.debug(f"Not relabeling {torrent_hash}: {torrent.name}")
                stats.not_matched += 1
                continue

            self.logger.info("-----")
            self.logger.info(f"Relabeling: {torrent.name!r} - {label}")
            self.logger.info(self._describe(torrent))

            if self.dry_run:
                self.logger.warning(f"[DRY RUN] Would set label {label!r} on torrent {torrent_hash}")
            else:
                try:
                    self.client.set_label(torrent_hash, label)
                except ActionError as e:
                    self.logger.error(f"Failed relabeling torrent {torrent.name!r}: {e}")
                    del torrents[torrent_hash]
                    stats.failures += 1
                    continue
                self.logger.info("Relabeled")
                self.sleep(5)

            torrents[torrent_hash] = dataclasses.replace(torrent, label=label)
            stats.relabeled += 1

        self.logger.info("-----")
        self.logger.info(f"Ignored torrents: {stats.not_matched}")
        if stats.non_unique:
            self.logger.info(f"Non-unique torrents: {stats.non_unique}")
        self.logger.info(f"Relabeled torrents: {stats.relabeled} ({stats.failures} failures)")
        return stats

    # --- Retag --------------------------------------------------------------

    def retag_eligible(self, torrents: Dict[str, TorrentRecord]) -> RetagStats:
        """
        Add and remove tags according to the filter's tag rules.

        The tags rules may add are created on the client first.

        Args:
            torrents: Snapshot, updated in place

        Returns:
            RetagStats for the pass

        Raises:
            ActionError: If the client is not tag capable or the tags could not be created
        """
        if not isinstance(self.client, TagClient):
            raise ActionError(f"{self.client.type_name} does not support tags")

        stats = RetagStats()

        tags = self.filter.tags_to_create()
        if tags:
            if self.dry_run:
                self.logger.warning(f"[DRY RUN] Would create tags: {', '.join(tags)}")
            else:
                self.client.create_tags(tags)
                self.logger.info("Verified tags exist on client")

        for torrent_hash, torrent in list(torrents.items()):
            try:
                info = self.filter.should_retag(torrent, self.context())
            except EvalError as e:
                self.logger.error(f"Failed determining whether to retag {torrent.name!r}: {e}")
                stats.errors += 1
                continue

            stats.conflicts += len(info.conflicts)
            if not info:
                self.logger.debug(f"Not retagging {torrent_hash}: {torrent.name}")
                stats.not_matched += 1
                continue

            self.logger.info("-----")
            self.logger.info(f"Retagging: {torrent.name!r} - add: {info.add} remove: {info.remove}")
            self.logger.info(self._describe(torrent))

            if self.dry_run:
                self.logger.warning(f"[DRY RUN] Would retag torrent {torrent_hash}")
            else:
                try:
                    if info.add:
                        self.client.add_tags([torrent_hash], info.add)
                    if info.remove:
                        self.client.remove_tags([torrent_hash], info.remove)
                except ActionError as e:
                    self.logger.error(f"Failed retagging torrent {torrent.name!r}: {e}")
                    del torrents[torrent_hash]
                    stats.failures += 1
                    continue
                self.logger.info("Retagged")

            new_tags = (torrent.tags | set(info.add)) - set(info.remove)
            torrents[torrent_hash] = dataclasses.replace(torrent, tags=new_tags)
            stats.retagged += 1

        self.logger.info("-----")
        self.logger.info(f"Ignored torrents: {stats.not_matched}")
        if stats.conflicts:
            self.logger.info(f"Conflicting tag rules: {stats.conflicts}")
        self.logger.info(f"Retagged torrents: {stats.retagged} ({stats.failures} failures)")
        return stats
