"""Redemption: token -> eligibility -> geofence -> ledger.

Each step short-circuits with its own status and reason. Only the final
ledger step writes; everything before it is safe to repeat.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from django.db import transaction
from django.utils import timezone

from apps.core.models import AttendanceRecord, MealConfirmation, MealToken

from . import tokens
from .config import AccessConfig, get_access_config
from .eligibility import SubscriptionGate
from .exceptions import TransientFailure
from .geofence import LOCATION_REQUIRED, GeofenceValidator
from .ledger import AttendanceLedger
from .storage import storage_call

logger = logging.getLogger(__name__)


class RedemptionStatus:
    REDEEMED = 'redeemed'
    INVALID_TOKEN = 'invalid_token'
    INELIGIBLE = 'ineligible'
    OUT_OF_RANGE = 'out_of_range'
    ALREADY_REDEEMED = 'already_redeemed'


MESSAGES = {
    (RedemptionStatus.INVALID_TOKEN, tokens.EXPIRED): "This QR code has expired",
    (RedemptionStatus.INVALID_TOKEN, tokens.CONSUMED): "This QR code has already been used",
    (RedemptionStatus.INVALID_TOKEN, tokens.WRONG_DATE): "This QR code is not valid for today",
    (RedemptionStatus.INVALID_TOKEN, tokens.WRONG_MEAL): "This QR code is for a different meal",
    (RedemptionStatus.INVALID_TOKEN, tokens.OUTSIDE_MEAL_WINDOW): "This QR code is for {meal}, which is not being served right now",
    (RedemptionStatus.INVALID_TOKEN, None): "This QR code is not valid",
    (RedemptionStatus.INELIGIBLE, 'no_subscription'): "You do not have a subscription at this mess",
    (RedemptionStatus.INELIGIBLE, 'subscription_expired'): "Your subscription has expired",
    (RedemptionStatus.INELIGIBLE, 'subscription_paused_or_cancelled'): "Your subscription is paused or cancelled",
    (RedemptionStatus.INELIGIBLE, 'payment_not_confirmed'): "Your subscription payment has not been confirmed",
    (RedemptionStatus.INELIGIBLE, 'meal_not_included'): "Your subscription does not include {meal}",
    (RedemptionStatus.INELIGIBLE, 'not_confirmed'): "Please confirm your {meal} before scanning",
    (RedemptionStatus.INELIGIBLE, 'confirmation_deadline_passed'): "Your {meal} confirmation deadline has passed",
    (RedemptionStatus.OUT_OF_RANGE, LOCATION_REQUIRED): "Location is required to mark attendance",
    (RedemptionStatus.OUT_OF_RANGE, None): "You are too far from the mess",
    (RedemptionStatus.ALREADY_REDEEMED, None): "Already marked present for {meal} today",
    (RedemptionStatus.REDEEMED, None): "Attendance marked for {meal}",
}


def message_for(status, reason=None, meal_type=None):
    template = MESSAGES.get((status, reason)) or MESSAGES[(status, None)]
    return template.format(meal=meal_type or 'this meal')


@dataclass(frozen=True)
class RedemptionResult:
    status: str
    reason: Optional[str] = None
    meal_type: Optional[str] = None
    date: Any = None
    distance: Optional[float] = None
    record: Optional[AttendanceRecord] = None

    @property
    def redeemed(self):
        return self.status == RedemptionStatus.REDEEMED

    @property
    def message(self):
        return message_for(self.status, self.reason, self.meal_type)


class RedemptionService:

    def __init__(
        self,
        config: Optional[AccessConfig] = None,
        clock=timezone.now,
        verifier=None,
        gate=None,
        geofence=None,
        ledger=None,
        sleep=time.sleep,
    ):
        self.config = config or get_access_config()
        self.clock = clock
        self.verifier = verifier or tokens.TokenVerifier(config=self.config, clock=clock)
        self.gate = gate or SubscriptionGate(clock=clock)
        self.geofence = geofence or GeofenceValidator()
        self.ledger = ledger or AttendanceLedger()
        self.sleep = sleep

    def redeem_meal_token(self, user, code, geo_location, meal_type=None, scan_method='qr') -> RedemptionResult:
        """A subscriber presents a meal-scoped token shown at the mess."""
        return self._with_retry(self._redeem_meal_token, user, code, geo_location, meal_type, scan_method)

    def redeem_user_token(self, code, mess, geo_location, meal_type=None, scan_method='qr') -> RedemptionResult:
        """A mess scanner presents a subscriber's user-bound token."""
        return self._with_retry(self._redeem_user_token, code, mess, geo_location, meal_type, scan_method)

    def _with_retry(self, func, *args):
        try:
            return func(*args)
        except TransientFailure as exc:
            logger.warning(f"Transient failure during redemption, retrying once: {exc}")
            self.sleep(self.config.retry_backoff_seconds)
            return func(*args)

    def _redeem_meal_token(self, user, code, geo_location, meal_type, scan_method):
        check = self.verifier.verify_meal_token(code)
        if not check.valid:
            return self._reject(RedemptionStatus.INVALID_TOKEN, check.reason)
        mess = check.token.mess
        return self._complete(user.pk, mess, check, geo_location, meal_type, scan_method, meal_token=check.token)

    def _redeem_user_token(self, code, mess, geo_location, meal_type, scan_method):
        check = self.verifier.verify_user_token(code)
        if not check.valid:
            return self._reject(RedemptionStatus.INVALID_TOKEN, check.reason)
        return self._complete(check.user_id, mess, check, geo_location, meal_type, scan_method)

    def _complete(self, user_id, mess, check, geo_location, meal_type, scan_method, meal_token=None):
        now = self.clock()

        if check.date != timezone.localdate(now):
            return self._reject(RedemptionStatus.INVALID_TOKEN, tokens.WRONG_DATE, check)
        if meal_type and meal_type != check.meal_type:
            return self._reject(RedemptionStatus.INVALID_TOKEN, tokens.WRONG_MEAL, check)
        if mess.current_meal_type(now) != check.meal_type:
            return self._reject(RedemptionStatus.INVALID_TOKEN, tokens.OUTSIDE_MEAL_WINDOW, check)

        eligibility = self.gate.check_eligibility(user_id, mess, check.date, check.meal_type)
        if not eligibility.ok:
            return self._reject(RedemptionStatus.INELIGIBLE, eligibility.reason, check)
        subscription = eligibility.subscription

        proximity = self.geofence.check_proximity(mess, geo_location)
        if not proximity.ok:
            if proximity.reason != LOCATION_REQUIRED:
                self.ledger.record_redemption(
                    user_id=user_id,
                    mess_id=mess.pk,
                    subscription_id=subscription.pk,
                    date=check.date,
                    meal_type=check.meal_type,
                    scan_time=now,
                    geo=proximity.point.as_dict(),
                    distance=proximity.distance_meters,
                    is_valid=False,
                    errors=[proximity.reason],
                    scan_method=scan_method,
                )
            return self._reject(RedemptionStatus.OUT_OF_RANGE, proximity.reason, check, proximity.distance_meters)

        write = dict(
            user_id=user_id,
            mess_id=mess.pk,
            subscription_id=subscription.pk,
            date=check.date,
            meal_type=check.meal_type,
            scan_time=now,
            geo=proximity.point.as_dict(),
            distance=proximity.distance_meters,
            scan_method=scan_method,
        )
        with storage_call('redemption write'), transaction.atomic():
            if meal_token is not None:
                consumed = MealToken.objects.filter(pk=meal_token.pk, consumed_at__isnull=True).update(
                    consumed_at=now, consumed_by_id=user_id
                )
                if not consumed:
                    return self._reject(RedemptionStatus.INVALID_TOKEN, tokens.CONSUMED, check)
            result = self.ledger.record_redemption(**write)
            if not result.created:
                # Already credited today; leave the token for someone else.
                transaction.set_rollback(True)
            elif mess.allow_meal_confirmation:
                MealConfirmation.objects.filter(
                    user_id=user_id,
                    mess=mess,
                    date=check.date,
                    meal_type=check.meal_type,
                    is_confirmed=True,
                ).update(redeemed_at=now)

        if not result.created:
            return self._reject(
                RedemptionStatus.ALREADY_REDEEMED, None, check, proximity.distance_meters
            )

        logger.info(f"User {user_id} redeemed {check.meal_type} on {check.date} at {mess.code}")
        return RedemptionResult(
            status=RedemptionStatus.REDEEMED,
            meal_type=check.meal_type,
            date=check.date,
            distance=proximity.distance_meters,
            record=result.record,
        )

    def _reject(self, status, reason, check=None, distance=None):
        logger.info(f"Redemption rejected: {status} ({reason})")
        return RedemptionResult(
            status=status,
            reason=reason,
            meal_type=check.meal_type if check else None,
            date=check.date if check else None,
            distance=distance,
        )
