import asyncio
import logging
import os
import time
import uuid
from typing import Optional

from . import media
from .settings import FRAMES_DIR

logger = logging.getLogger(__name__)

# Seek this far before the end; the very last timestamp often has no decodable frame.
END_OFFSET_S = 0.1


def last_frame_timestamp(duration: float) -> float:
    return max(0.0, duration - END_OFFSET_S)


class ContinuityExtractor:
    """Pulls the final frame of a generated clip so the next clip can start from it."""

    def __init__(self, frames_dir: str = FRAMES_DIR):
        self.frames_dir = frames_dir
        os.makedirs(self.frames_dir, exist_ok=True)

    async def extract_last_frame(self, video_path: str, output_name: Optional[str] = None) -> str:
        if not os.path.exists(video_path):
            raise FileNotFoundError(video_path)
        name = output_name or f"frame_{uuid.uuid4().hex}.jpg"
        out_path = os.path.join(self.frames_dir, name)

        duration = await asyncio.to_thread(media.probe_duration, video_path)
        at = last_frame_timestamp(duration)
        logger.info(f"Extracting frame at {at:.3f}s of {duration:.3f}s from {video_path}")
        await asyncio.to_thread(media.extract_frame, video_path, out_path, at)
        return out_path

    def purge_older_than(self, max_age_hours: float = 24) -> int:
        """Delete extracted frames older than max_age_hours. Never raises."""
        cutoff = time.time() - max_age_hours * 3600
        deleted = 0
        try:
            names = os.listdir(self.frames_dir)
        except OSError as e:
            logger.warning(f"Could not list {self.frames_dir}: {e}")
            return 0
        for name in names:
            path = os.path.join(self.frames_dir, name)
            try:
                if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    deleted += 1
            except OSError as e:
                logger.warning(f"Could not delete old frame {path}: {e}")
        if deleted:
            logger.info(f"Purged {deleted} frames older than {max_age_hours}h")
        return deleted
