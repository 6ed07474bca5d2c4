"""Celery tasks, registered by import when the worker loads this package."""

from quizmint.tasks.build_questions import build_questions

__all__ = ["build_questions"]
