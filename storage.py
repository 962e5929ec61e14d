"""
Published video store.

Every successful job owns one directory under the videos root, named by its
job ID, which is served as-is under the /videos URL prefix.
"""

import os
import re
import logging
from typing import List

from config import VIDEOS_URL_PREFIX
from services import delete_directory

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class InvalidVideoIdError(ValueError):
    pass


class VideoStore:
    """Publishes, lists and purges the durable per-job video directories."""

    def __init__(self, videos_dir: str, url_prefix: str = VIDEOS_URL_PREFIX):
        self.videos_dir = videos_dir
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.videos_dir, exist_ok=True)

    def _job_dir(self, video_id: str) -> str:
        if not _VIDEO_ID_RE.match(video_id or ""):
            raise InvalidVideoIdError(f"Invalid video id: {video_id!r}")
        return os.path.join(self.videos_dir, video_id)

    def prepare(self, video_id: str) -> str:
        """Create (if needed) and return the public directory for a job."""
        path = self._job_dir(video_id)
        os.makedirs(path, exist_ok=True)
        return path

    def url_for(self, video_id: str, filename: str) -> str:
        return f"{self.url_prefix}/{video_id}/{filename}"

    def list_ids(self) -> List[str]:
        return sorted(
            entry.name for entry in os.scandir(self.videos_dir) if entry.is_dir(follow_symlinks=False)
        )

    def delete(self, video_id: str) -> bool:
        """Remove one published directory. Returns False when it does not exist."""
        return delete_directory(self._job_dir(video_id))

    def delete_all(self) -> int:
        """Remove every published directory and return how many were removed."""
        deleted = 0
        for video_id in self.list_ids():
            if delete_directory(os.path.join(self.videos_dir, video_id)):
                deleted += 1
        logging.info(f"Cleaned up {deleted} video directories")
        return deleted
