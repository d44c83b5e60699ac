from __future__ import annotations
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "observa.settings")

from .celery import celery_app  # noqa: E402

__all__ = ("celery_app",)
