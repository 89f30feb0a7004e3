"""
Database module for shortpipe.

Provides the async engine factory, the Job model, the job repository used
by stages and the orchestrator, and schema initialization.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from shortpipe.db.engine import create_engine, create_session_factory
from shortpipe.db.models import Base, Job
from shortpipe.db.repository import JobRepository

logger = logging.getLogger(__name__)


async def init_database(engine: AsyncEngine) -> None:
    """Initialize database schema on first run."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


__all__ = [
    "Base",
    "Job",
    "JobRepository",
    "create_engine",
    "create_session_factory",
    "init_database",
]
