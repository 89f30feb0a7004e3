"""
Media storage service for shortpipe.

Stores generated images and voice-overs under a per-job directory and hands
back the public URL the downstream vendors (transcription, render) fetch
them from. Implements path traversal protection.
"""
from pathlib import Path

from shortpipe.config import settings


class MediaStorage:
    """
    Manage generated media for jobs.

    Layout:
    - {base_dir}/{job_id}/{filename}

    Public URLs mirror the layout under ``public_base_url``.
    """

    def __init__(self, base_dir: str | Path | None = None, public_base_url: str | None = None):
        """
        Initialize MediaStorage.

        Args:
            base_dir: Root directory for all job media.
                     If None, uses settings.storage.media_dir
            public_base_url: URL prefix that serves base_dir.
                     If None, uses settings.storage.public_base_url
        """
        if base_dir is None:
            base_dir = settings.storage.media_dir
        if public_base_url is None:
            public_base_url = settings.storage.public_base_url

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def get_job_dir(self, job_id: str) -> Path:
        """
        Get or create the media directory for a job.

        Raises:
            ValueError: If job_id creates path outside base_dir (traversal attack)
        """
        job_dir = (self.base_dir / job_id).resolve()
        if not job_dir.is_relative_to(self.base_dir) or job_dir == self.base_dir:
            raise ValueError("Invalid job path")
        job_dir.mkdir(exist_ok=True)
        return job_dir

    def save(self, job_id: str, filename: str, data: bytes) -> str:
        """
        Write ``data`` for a job and return its public URL.

        Overwrites an existing file of the same name, so re-running a stage
        replaces its earlier output.
        """
        job_dir = self.get_job_dir(job_id)
        filepath = (job_dir / filename).resolve()
        if filepath.parent != job_dir:
            raise ValueError("Invalid media filename")

        tmp_path = filepath.with_suffix(filepath.suffix + ".part")
        tmp_path.write_bytes(data)
        tmp_path.replace(filepath)

        return self.public_url(job_id, filename)

    def public_url(self, job_id: str, filename: str) -> str:
        return f"{self.public_base_url}/{job_id}/{filename}"
