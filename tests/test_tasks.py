"""Tests for the periodic maintenance tasks."""
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.access.tasks import purge_expired_meal_tokens, reconcile_subscription_statuses
from apps.core.models import AuditLog, MealToken


@pytest.mark.django_db
class TestReconcileSubscriptionStatuses:

    def test_statuses_follow_dates_and_payment(self, user, mess, make_subscription):
        today = timezone.localdate()
        lapsed = make_subscription(
            user, mess, start_date=today - timedelta(days=40), end_date=today - timedelta(days=10), status='active'
        )
        current = make_subscription(
            user, mess, start_date=today - timedelta(days=5), end_date=today + timedelta(days=25), status='pending'
        )
        paused = make_subscription(
            user, mess, start_date=today - timedelta(days=5), end_date=today + timedelta(days=25), status='paused'
        )

        assert reconcile_subscription_statuses() == 2

        lapsed.refresh_from_db()
        current.refresh_from_db()
        paused.refresh_from_db()
        assert lapsed.status == 'expired'
        assert current.status == 'active'
        assert paused.status == 'paused'
        assert AuditLog.objects.get(event_type='SUBSCRIPTION_STATUS_RECONCILED').payload['updated'] == 2

    def test_nothing_to_do(self, user, mess, make_subscription):
        today = timezone.localdate()
        make_subscription(user, mess, start_date=today, end_date=today + timedelta(days=30), status='active')

        assert reconcile_subscription_statuses() == 0
        assert not AuditLog.objects.exists()


@pytest.mark.django_db
class TestPurgeExpiredMealTokens:

    def test_only_old_tokens_purged(self, mess):
        now = timezone.now()
        MealToken.objects.create(
            code='old', mess=mess, meal_type='lunch', date=now.date() - timedelta(days=3),
            issued_at=now - timedelta(days=3), expires_at=now - timedelta(days=2),
        )
        MealToken.objects.create(
            code='recent', mess=mess, meal_type='lunch', date=now.date(),
            issued_at=now - timedelta(hours=5), expires_at=now - timedelta(hours=1),
        )

        assert purge_expired_meal_tokens() == 1
        assert list(MealToken.objects.values_list('code', flat=True)) == ['recent']
