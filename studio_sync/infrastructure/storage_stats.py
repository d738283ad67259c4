from __future__ import annotations

import logging
import os
from pathlib import Path

from studio_sync.domain.models import FolderStats
from studio_sync.domain.ports import StorageStatsPort

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".raw", ".cr2", ".arw", ".heic", ".webp"})

RAW_DIR = "01_RAW"
SELECTED_DIR = "02_SELECTED"
EDITED_DIR = "03_EDITED"
FINAL_DIR = "04_FINAL"


def count_images(folder: Path) -> int:
    """Recursive image count; a missing or unreadable folder counts as zero."""
    if not folder.is_dir():
        return 0
    total = 0
    for _dirpath, _dirnames, filenames in os.walk(folder, onerror=lambda exc: logger.debug("Skipping %s", exc)):
        total += sum(1 for name in filenames if Path(name).suffix.lower() in IMAGE_EXTENSIONS)
    return total


class FilesystemStorageStats(StorageStatsPort):
    """Counts photos in a session folder laid out as 01_RAW/02_SELECTED/03_EDITED/04_FINAL."""

    def get_stats(self, reference: str) -> FolderStats | None:
        root = Path(reference).expanduser()
        try:
            if not root.is_dir():
                return None
        except OSError:
            return None
        return FolderStats(
            raw=count_images(root / RAW_DIR),
            selected=count_images(root / SELECTED_DIR),
            edited=count_images(root / EDITED_DIR),
            final=count_images(root / FINAL_DIR),
        )
