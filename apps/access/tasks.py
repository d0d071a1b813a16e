"""Periodic maintenance for the access records.

Neither task is on the redemption path; the gate never reads what
``reconcile_subscription_statuses`` writes.
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from apps.core.models import AuditLog, MealToken, Subscription

from .eligibility import derive_status

logger = logging.getLogger(__name__)

TOKEN_RETENTION = timedelta(days=1)


@shared_task
def reconcile_subscription_statuses():
    """Rewrite cached subscription status to match dates and payment."""
    today = timezone.localdate()
    updated = 0

    for subscription in Subscription.objects.filter(archived_at__isnull=True).iterator():
        status = derive_status(subscription, today)
        if status != subscription.status:
            subscription.status = status
            subscription.save(update_fields=['status', 'updated_at'])
            updated += 1

    if updated:
        AuditLog.objects.create(
            actor_type='SYSTEM',
            event_type='SUBSCRIPTION_STATUS_RECONCILED',
            payload={'date': today.isoformat(), 'updated': updated},
        )
    logger.info(f"Reconciled {updated} subscription status(es)")
    return updated


@shared_task
def purge_expired_meal_tokens():
    """Drop registry rows that expired more than a day ago."""
    cutoff = timezone.now() - TOKEN_RETENTION
    deleted, _ = MealToken.objects.filter(expires_at__lt=cutoff).delete()
    logger.info(f"Purged {deleted} expired meal token(s)")
    return deleted
