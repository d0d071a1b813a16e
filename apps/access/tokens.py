"""Meal token issuance and verification.

Two kinds of token exist:

* meal-scoped tokens: an opaque random code registered in the ``MealToken``
  table under its (mess, meal_type, date) slot. They carry no claims and can
  only be resolved through the registry.
* user-bound tokens: base64 of a JSON object signed with HMAC-SHA256. They are
  verified without any lookup; replay is stopped by the attendance ledger.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import date as date_type, datetime, timedelta, timezone as dt_timezone
from typing import Any, Optional

from django.db import transaction
from django.utils import timezone

from apps.core.models import MEAL_TYPES, MealToken, Mess

from .config import AccessConfig, get_access_config
from .storage import storage_call

logger = logging.getLogger(__name__)

NOT_FOUND = 'not_found'
EXPIRED = 'expired'
BAD_SIGNATURE = 'bad_signature'
CONSUMED = 'consumed'
WRONG_DATE = 'wrong_date'
WRONG_MEAL = 'wrong_meal'
OUTSIDE_MEAL_WINDOW = 'outside_meal_window'

# 24 random bytes, 192 bits of entropy.
MEAL_CODE_BYTES = 24

USER_PAYLOAD_FIELDS = ('user_id', 'meal_type', 'date', 'timestamp', 'nonce')


def canonical_json(payload):
    return json.dumps(payload, sort_keys=True, separators=(',', ':'))


def sign_payload(secret, payload):
    """Hex HMAC-SHA256 of the canonical JSON payload."""
    return hmac.new(secret, canonical_json(payload).encode(), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class UserToken:
    code: str
    user_id: Any
    meal_type: str
    date: date_type
    issued_at: datetime
    expires_at: datetime
    nonce: str
    signature: str

    scope = 'user'

    @property
    def subject(self):
        return self.user_id


@dataclass(frozen=True)
class TokenCheck:
    """Outcome of verifying a presented token."""

    valid: bool
    reason: Optional[str] = None
    meal_type: Optional[str] = None
    date: Optional[date_type] = None
    user_id: Any = None
    token: Optional[MealToken] = None

    @classmethod
    def invalid(cls, reason):
        return cls(valid=False, reason=reason)


class TokenIssuer:
    """Mints meal-scoped and user-bound tokens."""

    def __init__(self, config: Optional[AccessConfig] = None, clock=timezone.now):
        self.config = config or get_access_config()
        self.clock = clock

    def issue_meal_token(self, mess, meal_type, date, validity_minutes=None) -> MealToken:
        """Return the live token for the slot, minting one if there is none.

        Re-issuing while a live, unconsumed token exists for the same
        (mess, meal_type, date) returns that token unchanged.
        """
        if validity_minutes is not None and validity_minutes <= 0:
            raise ValueError("validity_minutes must be positive")

        now = self.clock()
        with storage_call('meal token issue'), transaction.atomic():
            # Serialises issuance per mess so a slot never gets two live tokens.
            Mess.objects.select_for_update().get(pk=mess.pk)

            existing = (
                MealToken.objects.for_slot(mess, meal_type, date)
                .live(now)
                .order_by('-issued_at')
                .first()
            )
            if existing is not None:
                return existing

            if validity_minutes is None:
                validity = self.config.meal_token_validity(meal_type)
            else:
                validity = timedelta(minutes=validity_minutes)

            token = MealToken.objects.create(
                code=secrets.token_urlsafe(MEAL_CODE_BYTES),
                mess=mess,
                meal_type=meal_type,
                date=date,
                issued_at=now,
                expires_at=now + validity,
            )

        logger.info(f"Meal token issued for {mess.code} {meal_type} {date}, expires {token.expires_at.isoformat()}")
        return token

    def issue_daily_meal_tokens(self, mess, date):
        """Live token for every meal of the day, keyed by meal type."""
        return {meal_type: self.issue_meal_token(mess, meal_type, date) for meal_type in MEAL_TYPES}

    def issue_bulk_meal_tokens(self, mess, start_date, end_date):
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        tokens = []
        day = start_date
        while day <= end_date:
            for meal_type in MEAL_TYPES:
                tokens.append(self.issue_meal_token(mess, meal_type, day))
            day += timedelta(days=1)
        logger.info(f"Issued {len(tokens)} meal tokens for {mess.code} from {start_date} to {end_date}")
        return tokens

    def invalidate_meal_tokens(self, mess, meal_type, date):
        """Drop every live token of a slot. Returns how many were dropped."""
        with storage_call('meal token invalidation'):
            deleted, _ = MealToken.objects.for_slot(mess, meal_type, date).live(self.clock()).delete()
        logger.info(f"Invalidated {deleted} meal token(s) for {mess.code} {meal_type} {date}")
        return deleted

    def issue_user_token(self, user_id, meal_type, date) -> UserToken:
        issued_at = self.clock()
        payload = {
            'user_id': user_id,
            'meal_type': meal_type,
            'date': date.isoformat(),
            'timestamp': int(issued_at.timestamp() * 1000),
            'nonce': secrets.token_hex(16),
        }
        signature = sign_payload(self.config.secret, payload)
        code = base64.b64encode(canonical_json({**payload, 'signature': signature}).encode()).decode()

        return UserToken(
            code=code,
            user_id=user_id,
            meal_type=meal_type,
            date=date,
            issued_at=issued_at,
            expires_at=issued_at + self.config.user_token_validity,
            nonce=payload['nonce'],
            signature=signature,
        )


class TokenVerifier:
    """Authenticates presented tokens. Read-only."""

    def __init__(self, config: Optional[AccessConfig] = None, clock=timezone.now):
        self.config = config or get_access_config()
        self.clock = clock

    def verify_meal_token(self, code) -> TokenCheck:
        if not code or not isinstance(code, str):
            return TokenCheck.invalid(NOT_FOUND)

        with storage_call('meal token lookup'):
            token = MealToken.objects.select_related('mess').filter(code=code).first()

        if token is None:
            return TokenCheck.invalid(NOT_FOUND)
        if token.is_expired(self.clock()):
            return TokenCheck.invalid(EXPIRED)
        if token.consumed_at is not None:
            return TokenCheck.invalid(CONSUMED)

        return TokenCheck(valid=True, meal_type=token.meal_type, date=token.date, token=token)

    def verify_user_token(self, code) -> TokenCheck:
        """Check signature first, then freshness.

        Anything that cannot be decoded is reported as a bad signature so the
        caller learns nothing about partially plausible payloads.
        """
        data = self._decode(code)
        if data is None:
            return TokenCheck.invalid(BAD_SIGNATURE)

        signature = data.pop('signature')
        expected = sign_payload(self.config.secret, data)
        if not hmac.compare_digest(str(signature).encode(), expected.encode()):
            return TokenCheck.invalid(BAD_SIGNATURE)

        try:
            issued_at = datetime.fromtimestamp(int(data['timestamp']) / 1000, tz=dt_timezone.utc)
            meal_date = date_type.fromisoformat(data['date'])
        except (TypeError, ValueError, OverflowError):
            return TokenCheck.invalid(BAD_SIGNATURE)

        if self.clock() > issued_at + self.config.user_token_validity:
            return TokenCheck.invalid(EXPIRED)

        return TokenCheck(valid=True, meal_type=data['meal_type'], date=meal_date, user_id=data['user_id'])

    @staticmethod
    def _decode(code):
        if not code or not isinstance(code, str):
            return None
        try:
            raw = base64.b64decode(code, validate=True)
            # Reject non-canonical encodings that decode to the same bytes.
            if base64.b64encode(raw).decode() != code:
                return None
            data = json.loads(raw.decode())
        except (binascii.Error, ValueError):
            return None

        if not isinstance(data, dict) or set(data) != set(USER_PAYLOAD_FIELDS) | {'signature'}:
            return None
        return data
