from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from observa.celery import celery_app
from .models import Session

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=10,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def close_stale_sessions_task(self, batch_size: int = 200) -> int:
    """
    Finish sessions left open longer than OBSERVA_SESSION_MAX_HOURS.
    Sessions are closed in chunks of `batch_size`; returns the total closed.
    """
    now = timezone.now()
    cutoff = now - timedelta(hours=settings.OBSERVA_SESSION_MAX_HOURS)
    total = 0
    while True:
        ids = list(
            Session.objects.filter(end_time__isnull=True, start_time__lt=cutoff)
            .order_by("start_time")
            .values_list("id", flat=True)[:batch_size]
        )
        if not ids:
            break

        updated = Session.objects.filter(id__in=ids, end_time__isnull=True).update(
            end_time=now,
            updated_at=now,
        )
        total += updated
        if len(ids) < batch_size:
            break

    logger.info("Stale sessions closed", extra={"count": total})
    return total
