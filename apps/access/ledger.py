"""Attendance ledger: the only write in the redemption path."""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import IntegrityError, transaction

from apps.core.models import AttendanceRecord

from .storage import storage_call

logger = logging.getLogger(__name__)

CREATED = 'created'
DUPLICATE = 'duplicate'


@dataclass(frozen=True)
class LedgerResult:
    outcome: str
    record: Optional[AttendanceRecord] = None

    @property
    def created(self):
        return self.outcome == CREATED


class AttendanceLedger:

    def record_redemption(
        self,
        user_id,
        mess_id,
        subscription_id,
        date,
        meal_type,
        scan_time,
        geo=None,
        distance=None,
        is_valid=True,
        errors=None,
        scan_method='qr',
    ) -> LedgerResult:
        """Insert one attendance record.

        The partial unique index on (user, scan_date, meal_type) for valid
        records decides races; a violation comes back as DUPLICATE.
        """
        try:
            with storage_call('attendance write'), transaction.atomic():
                record = AttendanceRecord.objects.create(
                    user_id=user_id,
                    mess_id=mess_id,
                    subscription_id=subscription_id,
                    scan_date=date,
                    meal_type=meal_type,
                    scan_time=scan_time,
                    geo_location=geo,
                    distance_from_mess=distance,
                    is_valid=is_valid,
                    validation_errors=list(errors or []),
                    scan_method=scan_method,
                )
        except IntegrityError:
            if not (is_valid and self.has_valid_record(user_id, date, meal_type)):
                raise
            logger.info(f"Duplicate redemption for user {user_id}: {meal_type} on {date}")
            return LedgerResult(outcome=DUPLICATE)

        return LedgerResult(outcome=CREATED, record=record)

    def has_valid_record(self, user_id, date, meal_type):
        with storage_call('attendance read'):
            return AttendanceRecord.objects.filter(
                user_id=user_id, scan_date=date, meal_type=meal_type, is_valid=True
            ).exists()
