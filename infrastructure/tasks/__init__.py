"""Celery task infrastructure package.

Importing this module wires together the configured Celery app and its
periodic schedule.
"""
from .config.celery import celery_app

__all__ = ["celery_app"]
