"""
Offline download storage for media-sync.

Offline copies of tracks live in one flat directory, named after the
track's remote id:

    downloads_directory/
    ├── 5f1c2e0d9a.m4a
    ├── 7b30aa41c2.mp4
    └── ...

Downloading and transcoding happen elsewhere; this module only locates
and deletes files. Orphan cleanup calls delete_download() for every track
that disappeared from the server. cleanup_orphaned_downloads() sweeps
files left behind by cleanups that failed earlier (media-sync prune).

Usage:
    from media_sync.downloads import OfflineDownloadManager

    manager = OfflineDownloadManager(config.storage.downloads_directory)
    manager.delete_download("5f1c2e0d9a")
"""

from pathlib import Path
from typing import Iterable

from media_sync.core.logger import get_logger, log_cleanup_failure

logger = get_logger(__name__)


AUDIO_EXTENSIONS = (".m4a", ".mp4")


class OfflineDownloadManager:
    """
    Locates and deletes offline audio copies.

    Attributes:
        directory: Directory holding the downloaded files.
    """

    def __init__(self, directory: Path) -> None:
        """
        Initialize the manager.

        Args:
            directory: Download directory. Created if it doesn't exist.
        """
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def paths_for(self, track_id: str) -> list[Path]:
        """Every candidate path for a track, existing or not."""
        return [self.directory / f"{track_id}{ext}" for ext in AUDIO_EXTENSIONS]

    def downloaded_track_ids(self) -> set[str]:
        """Remote ids of every track with an offline copy."""
        return {
            file.stem
            for file in self.directory.iterdir()
            if file.is_file() and file.suffix.lower() in AUDIO_EXTENSIONS
        }

    def delete_download(self, track_id: str) -> bool:
        """
        Delete the offline copy of a track.

        Returns:
            True if at least one file was deleted, False if none existed.

        Raises:
            OSError: If a file exists but cannot be removed.
        """
        deleted = False
        for path in self.paths_for(track_id):
            if path.exists():
                path.unlink()
                logger.debug(f"Deleted offline copy {path.name}")
                deleted = True
        return deleted

    def cleanup_orphaned_downloads(self, valid_track_ids: Iterable[str]) -> list[str]:
        """
        Delete offline copies whose track is no longer cached.

        Failures are logged per track and do not stop the cleanup.

        Returns:
            Remote ids whose files were deleted.
        """
        valid = set(valid_track_ids)
        removed: list[str] = []

        for track_id in sorted(self.downloaded_track_ids() - valid):
            try:
                if self.delete_download(track_id):
                    removed.append(track_id)
            except OSError as e:
                log_cleanup_failure(logger, track_id, e.filename, e.strerror or str(e))

        if removed:
            logger.info(f"Removed {len(removed)} orphaned offline downloads")
        return removed
