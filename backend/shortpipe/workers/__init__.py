"""Celery worker: one task per job attempt."""
