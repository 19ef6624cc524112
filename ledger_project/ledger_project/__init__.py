# Celery instance is defined in ledger_project/celery.py
# It points the worker at the Django settings
from .celery import celery_app

__all__ = ("celery_app",)

""" Workers are started with "celery -A ledger_project worker -l info",
    which imports this module and picks up celery_app. """
