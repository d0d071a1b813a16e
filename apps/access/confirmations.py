"""Meal pre-confirmation for messes that require it."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.db import transaction
from django.utils import timezone

from apps.core.models import MealConfirmation

from .storage import storage_call

logger = logging.getLogger(__name__)

NOT_CONFIRMED = 'not_confirmed'
CONFIRMATION_DEADLINE_PASSED = 'confirmation_deadline_passed'

CANCELLATION_CUTOFF = timedelta(hours=2)


@dataclass(frozen=True)
class ConfirmationResult:
    ok: bool
    reason: Optional[str] = None
    confirmation: Optional[MealConfirmation] = None


class ConfirmationError(ValueError):
    """A confirmation request that cannot be honoured."""
    pass


class ConfirmationGate:

    def __init__(self, clock=timezone.now):
        self.clock = clock

    def check_confirmed(self, user_id, day, meal_type, mess) -> ConfirmationResult:
        with storage_call('meal confirmation read'):
            confirmation = MealConfirmation.objects.filter(
                user_id=user_id, mess=mess, date=day, meal_type=meal_type
            ).first()

        if confirmation is None or not confirmation.is_confirmed:
            return ConfirmationResult(ok=False, reason=NOT_CONFIRMED, confirmation=confirmation)
        if confirmation.confirmation_deadline is not None and self.clock() > confirmation.confirmation_deadline:
            return ConfirmationResult(ok=False, reason=CONFIRMATION_DEADLINE_PASSED, confirmation=confirmation)
        return ConfirmationResult(ok=True, confirmation=confirmation)


def confirm_meal(user, mess, day, meal_type, clock=timezone.now):
    """Confirm attendance for a meal. A cancelled confirmation is re-opened.

    The redemption deadline is ``confirmation_deadline_hours`` after the
    moment of confirming.
    """
    now = clock()
    if day < timezone.localdate(now):
        raise ConfirmationError("Cannot confirm meals for past dates")

    deadline = now + timedelta(hours=mess.confirmation_deadline_hours)
    with transaction.atomic():
        confirmation, created = MealConfirmation.objects.select_for_update().get_or_create(
            user=user,
            date=day,
            meal_type=meal_type,
            defaults={
                'mess': mess,
                'is_confirmed': True,
                'confirmed_at': now,
                'confirmation_deadline': deadline,
            },
        )
        if not created:
            if confirmation.is_confirmed:
                raise ConfirmationError("Meal already confirmed")
            confirmation.mess = mess
            confirmation.is_confirmed = True
            confirmation.confirmed_at = now
            confirmation.confirmation_deadline = deadline
            confirmation.cancelled_at = None
            confirmation.save()

    logger.info(f"User {user.pk} confirmed {meal_type} on {day} at {mess.code}")
    return confirmation


def cancel_meal_confirmation(user, day, meal_type, clock=timezone.now):
    """Withdraw a confirmation, up to two hours before the meal starts."""
    now = clock()
    with storage_call('meal confirmation cancel'), transaction.atomic():
        confirmation = MealConfirmation.objects.select_for_update().filter(
            user=user, date=day, meal_type=meal_type
        ).first()
        if confirmation is None or not confirmation.is_confirmed:
            raise ConfirmationError("Confirmation not found")
        if day < timezone.localdate(now):
            raise ConfirmationError("Cannot cancel past meals")

        meal_start = timezone.make_aware(datetime.combine(day, confirmation.mess.meal_window(meal_type)[0]))
        if now > meal_start - CANCELLATION_CUTOFF:
            raise ConfirmationError("Cannot cancel within 2 hours of the meal")

        confirmation.is_confirmed = False
        confirmation.cancelled_at = now
        confirmation.save(update_fields=['is_confirmed', 'cancelled_at', 'updated_at'])

    logger.info(f"User {user.pk} cancelled {meal_type} confirmation for {day}")
    return confirmation
