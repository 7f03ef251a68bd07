"""Fixed-window request counter persisted in ``RateLimitRecord``.

The check and the increment happen in one transaction while holding the
row lock, so two concurrent requests can never both observe the last free
slot. Callers are expected to fail open on ``DatabaseError``.
"""
import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .models import RateLimitRecord

logger = logging.getLogger(__name__)


@transaction.atomic
def check_rate_limit(identifier: str, endpoint: str, max_requests: int, window_seconds: int) -> bool:
    now = timezone.now()
    record, created = RateLimitRecord.objects.select_for_update().get_or_create(
        identifier=identifier,
        endpoint=endpoint,
        defaults={"window_start": now, "request_count": 1},
    )
    if created:
        return True

    if now - record.window_start > timedelta(seconds=window_seconds):
        record.window_start = now
        record.request_count = 1
        record.save(update_fields=["window_start", "request_count"])
        return True

    RateLimitRecord.objects.filter(pk=record.pk).update(request_count=F("request_count") + 1)
    return record.request_count + 1 <= max_requests


def cleanup_rate_limits(older_than_hours: int = 24) -> int:
    cutoff = timezone.now() - timedelta(hours=older_than_hours)
    deleted, _ = RateLimitRecord.objects.filter(window_start__lt=cutoff).delete()
    if deleted:
        logger.info("Removed %s stale rate limit rows older than %sh", deleted, older_than_hours)
    return deleted
