"""Directory listing for the orphan scan."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List


logger = logging.getLogger(__name__)


@dataclass
class LocalPath:
    """A file or folder found below a download directory."""
    path: str
    is_dir: bool
    size: int = 0


def get_paths_in_folder(folder: str, include_files: bool = True,
                        include_folders: bool = True) -> List[LocalPath]:
    """
    Recursively list the contents of a folder.

    The folder itself is included when folders are requested. Entries that
    vanish or cannot be stat'ed while walking are skipped.

    Args:
        folder: Root folder to walk
        include_files: Include regular files
        include_folders: Include directories

    Returns:
        List of LocalPath entries
    """
    root = Path(folder)
    if not root.is_dir():
        logger.error(f"Failed to retrieve paths from {folder}: not a directory")
        return []

    paths = []
    if include_folders:
        paths.append(LocalPath(str(root), True, 0))

    for entry in root.rglob('*'):
        try:
            is_dir = entry.is_dir()
            if is_dir and not include_folders:
                continue
            if not is_dir and not include_files:
                continue
            size = 0 if is_dir else entry.stat().st_size
        except OSError as e:
            logger.debug(f"Skipping {entry}: {e}")
            continue
        paths.append(LocalPath(str(entry), is_dir, size))

    return paths
