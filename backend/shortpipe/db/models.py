"""SQLAlchemy 2.0 ORM models for shortpipe."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, JSON, Integer, Index, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Durable job lifecycle. A job never leaves a terminal status.
JOB_PROCESSING = "processing"
JOB_FAILED = "failed"
JOB_COMPLETE = "complete"


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Job(Base):
    """One user-submitted short video and its accumulated stage outputs.

    Each stage writes its output here before the orchestrator checkpoints the
    stage, so a completed checkpoint entry guarantees the artifact exists.
    """
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    prompt: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=JOB_PROCESSING)

    # script stage
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_prompts: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # images stage
    image_links: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # audio stage
    audio_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    # captions stage: [{"text", "startFrame", "endFrame"}]
    captions: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    duration_frames: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # render stage
    video_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_jobs_owner_created", "owner_id", "created_at"),
    )
