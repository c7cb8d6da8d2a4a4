"""Celery tasks for the spending app."""
