"""Shared fixtures for the meal access tests."""
from datetime import date, datetime, timedelta, timezone as dt_timezone

import pytest


# Lunch service on a Monday, whole seconds so token timestamps round-trip.
NOW = datetime(2025, 3, 10, 12, 30, tzinfo=dt_timezone.utc)
TODAY = date(2025, 3, 10)

MESS_LATITUDE = 12.9716
MESS_LONGITUDE = 77.5946

# Roughly 111 m north of the mess
NEARBY = {'latitude': 12.9726, 'longitude': 77.5946}
# Roughly 1.1 km north of the mess
FARAWAY = {'latitude': 12.9816, 'longitude': 77.5946}


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def access_config():
    from apps.access.config import AccessConfig

    return AccessConfig(secret=b'test-qr-secret', retry_backoff_seconds=0)


@pytest.fixture
def mess(db):
    from apps.core.models import Mess

    return Mess.objects.create(
        name='North Block Mess',
        code='NBM',
        latitude=MESS_LATITUDE,
        longitude=MESS_LONGITUDE,
        radius_meters=200,
    )


@pytest.fixture
def other_mess(db):
    from apps.core.models import Mess

    return Mess.objects.create(
        name='South Block Mess',
        code='SBM',
        latitude=12.9352,
        longitude=77.6245,
    )


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username='asha', password='pass12345')


@pytest.fixture
def make_subscription(db):
    """Factory for subscriptions; usable for every meal today by default."""
    from apps.core.models import Subscription

    def _make(user, mess, **overrides):
        fields = {
            'start_date': TODAY - timedelta(days=5),
            'end_date': TODAY + timedelta(days=25),
            'status': 'active',
            'payment_status': 'paid',
        }
        fields.update(overrides)
        return Subscription.objects.create(user=user, mess=mess, **fields)

    return _make


@pytest.fixture
def subscription(user, mess, make_subscription):
    return make_subscription(user, mess)
