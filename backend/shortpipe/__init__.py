"""Shortpipe - resumable AI short-video generation pipeline.

Five stages (script, images, audio, captions, render) each call a slow,
fallible external service. The orchestrator checkpoints completed stages so
a retried job resumes instead of restarting.

Call configure_logging() once from each process entry point (API, CLI,
worker) before doing any work.
"""

import logging

__version__ = "0.1.0"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the process-wide log format.

    Safe to call more than once; later calls only adjust the level.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)
    # httpx logs every request at INFO, which drowns out poll loops
    logging.getLogger("httpx").setLevel(logging.WARNING)
