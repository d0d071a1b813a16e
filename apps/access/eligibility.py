"""Subscription eligibility.

Usability is derived from dates, payment and meal flags every time. The
stored ``Subscription.status`` is only consulted for the explicit
paused/cancelled states that no date arithmetic can recover.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.utils import timezone

from apps.core.models import Subscription

from .confirmations import ConfirmationGate
from .storage import storage_call

logger = logging.getLogger(__name__)

NO_SUBSCRIPTION = 'no_subscription'
SUBSCRIPTION_EXPIRED = 'subscription_expired'
SUBSCRIPTION_PAUSED_OR_CANCELLED = 'subscription_paused_or_cancelled'
PAYMENT_NOT_CONFIRMED = 'payment_not_confirmed'
MEAL_NOT_INCLUDED = 'meal_not_included'

HALTED_STATUSES = ('paused', 'cancelled')


@dataclass(frozen=True)
class GateResult:
    ok: bool
    reason: Optional[str] = None
    subscription: Optional[Subscription] = None


def covers(subscription, day):
    return subscription.start_date <= day <= subscription.end_date


def unusable_reason(subscription, day, meal_type):
    """Why a subscription cannot be used for a meal on a day, or None."""
    if day > subscription.end_date:
        return SUBSCRIPTION_EXPIRED
    if day < subscription.start_date:
        return NO_SUBSCRIPTION
    if subscription.status in HALTED_STATUSES:
        return SUBSCRIPTION_PAUSED_OR_CANCELLED
    if subscription.payment_status != 'paid':
        return PAYMENT_NOT_CONFIRMED
    if not subscription.includes_meal(meal_type):
        return MEAL_NOT_INCLUDED
    return None


def is_usable(subscription, day, meal_type):
    return unusable_reason(subscription, day, meal_type) is None


def derive_status(subscription, today):
    """Status the stored field should hold on ``today``.

    Paused and cancelled are explicit operator states and are kept.
    """
    if subscription.status in HALTED_STATUSES:
        return subscription.status
    if today > subscription.end_date:
        return 'expired'
    if covers(subscription, today) and subscription.payment_status == 'paid':
        return 'active'
    return 'pending'


def pick_subscription(subscriptions, day, meal_type):
    """Choose the subscription that governs a redemption.

    Among those covering ``day``: usable for the meal first, then usable at
    all, then latest start_date, then most recent created_at.
    """
    covering = [s for s in subscriptions if covers(s, day)]
    if not covering:
        return None

    def rank(subscription):
        reason = unusable_reason(subscription, day, meal_type)
        return (
            reason is None,
            reason in (None, MEAL_NOT_INCLUDED),
            subscription.start_date,
            subscription.created_at,
            subscription.pk or 0,
        )

    return max(covering, key=rank)


class SubscriptionGate:

    def __init__(self, confirmation_gate=None, clock=timezone.now):
        self.confirmation_gate = confirmation_gate or ConfirmationGate(clock=clock)

    def check_eligibility(self, user_id, mess, day, meal_type) -> GateResult:
        with storage_call('subscription read'):
            subscriptions = list(
                Subscription.objects.filter(user_id=user_id, mess=mess, archived_at__isnull=True)
            )

        if not subscriptions:
            return GateResult(ok=False, reason=NO_SUBSCRIPTION)

        subscription = pick_subscription(subscriptions, day, meal_type)
        if subscription is None:
            if any(s.end_date < day for s in subscriptions):
                return GateResult(ok=False, reason=SUBSCRIPTION_EXPIRED)
            return GateResult(ok=False, reason=NO_SUBSCRIPTION)

        reason = unusable_reason(subscription, day, meal_type)
        if reason is not None:
            return GateResult(ok=False, reason=reason, subscription=subscription)

        if mess.allow_meal_confirmation:
            confirmation = self.confirmation_gate.check_confirmed(user_id, day, meal_type, mess)
            if not confirmation.ok:
                return GateResult(ok=False, reason=confirmation.reason, subscription=subscription)

        return GateResult(ok=True, subscription=subscription)
