"""Lets ``celery -A apps.worker worker -Q generation`` find the app."""

from apps.worker.main import celery_app

__all__ = ["celery_app"]
