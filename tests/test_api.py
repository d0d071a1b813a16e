"""Tests for the meal access HTTP API."""
from datetime import timedelta
from unittest import mock

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from apps.access.exceptions import TransientFailure
from apps.access.tokens import TokenIssuer
from apps.core.models import AttendanceRecord, AuditLog, MealConfirmation, Mess, StaffToken

from .conftest import FARAWAY, NEARBY


@pytest.fixture
def today():
    return timezone.localdate()


@pytest.fixture
def live_subscription(user, mess, make_subscription, today):
    return make_subscription(user, mess, start_date=today - timedelta(days=5), end_date=today + timedelta(days=25))


@pytest.fixture
def subscriber_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def lunch_service():
    with mock.patch.object(Mess, 'current_meal_type', return_value='lunch'):
        yield


@pytest.fixture
def bare_mess(db):
    return Mess.objects.create(name='Annex Mess', code='ANX')


@pytest.fixture
def staff_client(mess):
    _, token = StaffToken.create_token('Gate 1', mess)
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
    return client


@pytest.mark.django_db
class TestStaffAuthentication:

    def test_unknown_token(self):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION='Bearer nope')

        response = client.post('/api/v1/tokens/meal', {'meal_type': 'lunch'}, format='json')

        assert response.status_code == 401

    def test_expired_token(self, mess):
        staff_token, token = StaffToken.create_token('Gate 1', mess)
        StaffToken.objects.filter(pk=staff_token.pk).update(expires_at=timezone.now() - timedelta(minutes=1))
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')

        response = client.post('/api/v1/tokens/meal', {'meal_type': 'lunch'}, format='json')

        assert response.status_code == 401

    def test_subscriber_cannot_issue(self, subscriber_client):
        response = subscriber_client.post('/api/v1/tokens/meal', {'meal_type': 'lunch'}, format='json')

        assert response.status_code == 403

    def test_staff_cannot_redeem(self, staff_client):
        response = staff_client.post('/api/v1/redeem', {'token': 'x'}, format='json')

        assert response.status_code == 403


@pytest.mark.django_db
class TestTokenEndpoints:

    def test_issue_meal_token(self, staff_client, mess, today):
        response = staff_client.post('/api/v1/tokens/meal', {'meal_type': 'dinner'}, format='json')

        assert response.status_code == 201
        assert response.data['mess_code'] == mess.code
        assert response.data['meal_type'] == 'dinner'
        assert response.data['date'] == today.isoformat()
        assert response.data['validity_minutes'] == 240
        assert response.data['refresh_minutes'] == 30
        assert response.data['qr_image']

    def test_reissue_returns_same_code(self, staff_client):
        first = staff_client.post('/api/v1/tokens/meal', {'meal_type': 'lunch'}, format='json')
        second = staff_client.post('/api/v1/tokens/meal', {'meal_type': 'lunch'}, format='json')

        assert first.data['code'] == second.data['code']

    def test_no_meal_in_service(self, staff_client, mess):
        with mock.patch.object(type(mess), 'current_meal_type', return_value=None):
            response = staff_client.post('/api/v1/tokens/meal', {}, format='json')

        assert response.status_code == 400

    def test_daily_tokens(self, staff_client, today):
        response = staff_client.get('/api/v1/tokens/daily')

        assert response.status_code == 200
        assert response.data['date'] == today.isoformat()
        assert set(response.data['tokens']) == {'breakfast', 'lunch', 'dinner'}

    def test_my_token(self, subscriber_client, user):
        response = subscriber_client.get('/api/v1/tokens/me', {'meal_type': 'lunch'})

        assert response.status_code == 201
        assert response.data['meal_type'] == 'lunch'
        assert response.data['code']
        assert response.data['qr_image']

    def test_my_token_needs_meal_type(self, subscriber_client):
        assert subscriber_client.get('/api/v1/tokens/me').status_code == 400


@pytest.mark.django_db
@pytest.mark.usefixtures('lunch_service')
class TestRedeemEndpoint:

    def _meal_code(self, mess, today):
        return TokenIssuer().issue_meal_token(mess, 'lunch', today).code

    def test_redeemed(self, subscriber_client, user, mess, live_subscription, today):
        response = subscriber_client.post(
            '/api/v1/redeem',
            {'token': self._meal_code(mess, today), 'geo_location': NEARBY},
            format='json',
        )

        assert response.status_code == 201
        assert response.data['result'] == 'redeemed'
        assert response.data['attendance']['meal_type'] == 'lunch'
        assert AttendanceRecord.objects.filter(user=user, is_valid=True).count() == 1
        audit = AuditLog.objects.get(event_type='MEAL_REDEEMED')
        assert audit.actor_type == 'SUBSCRIBER'
        assert audit.actor_id == str(user.pk)

    def test_invalid_token(self, subscriber_client, live_subscription):
        response = subscriber_client.post(
            '/api/v1/redeem', {'token': 'made-up', 'geo_location': NEARBY}, format='json'
        )

        assert response.status_code == 400
        assert response.data['result'] == 'invalid_token'
        assert AuditLog.objects.get().event_type == 'REDEMPTION_REJECTED'

    def test_ineligible(self, subscriber_client, mess, today):
        response = subscriber_client.post(
            '/api/v1/redeem',
            {'token': self._meal_code(mess, today), 'geo_location': NEARBY},
            format='json',
        )

        assert response.status_code == 403
        assert response.data['reason'] == 'no_subscription'

    def test_out_of_range(self, subscriber_client, mess, live_subscription, today):
        response = subscriber_client.post(
            '/api/v1/redeem',
            {'token': self._meal_code(mess, today), 'geo_location': FARAWAY},
            format='json',
        )

        assert response.status_code == 403
        assert response.data['result'] == 'out_of_range'
        assert response.data['distance'] > 1000

    def test_location_missing(self, subscriber_client, mess, live_subscription, today):
        response = subscriber_client.post(
            '/api/v1/redeem', {'token': self._meal_code(mess, today)}, format='json'
        )

        assert response.status_code == 403
        assert response.data['reason'] == 'location_required'

    def test_transient_failure(self, subscriber_client, live_subscription):
        with mock.patch('apps.api.views.RedemptionService.redeem_meal_token', side_effect=TransientFailure('down')):
            response = subscriber_client.post(
                '/api/v1/redeem', {'token': 'x', 'geo_location': NEARBY}, format='json'
            )

        assert response.status_code == 503
        assert response.data['result'] == 'transient_failure'

    def test_mess_without_coordinates(self, subscriber_client, user, bare_mess, make_subscription, today):
        make_subscription(user, bare_mess, start_date=today - timedelta(days=5), end_date=today + timedelta(days=25))

        response = subscriber_client.post(
            '/api/v1/redeem',
            {'token': self._meal_code(bare_mess, today), 'geo_location': NEARBY},
            format='json',
        )

        assert response.status_code == 500
        assert response.data['result'] == 'configuration_error'
        assert not AttendanceRecord.objects.exists()


@pytest.mark.django_db
@pytest.mark.usefixtures('lunch_service')
class TestScannerEndpoint:

    def test_scan_then_rescan(self, staff_client, user, live_subscription, today):
        code = TokenIssuer().issue_user_token(user.pk, 'lunch', today).code

        first = staff_client.post('/api/v1/scanner/scan', {'token': code, 'geo_location': NEARBY}, format='json')
        second = staff_client.post('/api/v1/scanner/scan', {'token': code, 'geo_location': NEARBY}, format='json')

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.data['result'] == 'already_redeemed'
        assert AuditLog.objects.filter(actor_type='STAFF').count() == 2

    def test_forged_token(self, staff_client, live_subscription):
        response = staff_client.post('/api/v1/scanner/scan', {'token': 'Zm9yZ2Vk', 'geo_location': NEARBY}, format='json')

        assert response.status_code == 400
        assert response.data['reason'] is None
        assert response.data['message'] == 'This QR code is not valid'
        assert AuditLog.objects.get().payload['reason'] == 'bad_signature'

    def test_mess_without_coordinates(self, user, bare_mess, make_subscription, today):
        make_subscription(user, bare_mess, start_date=today - timedelta(days=5), end_date=today + timedelta(days=25))
        _, secret = StaffToken.create_token('Annex gate', bare_mess)
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {secret}')
        code = TokenIssuer().issue_user_token(user.pk, 'lunch', today).code

        response = client.post('/api/v1/scanner/scan', {'token': code, 'geo_location': NEARBY}, format='json')

        assert response.status_code == 500
        assert response.data['result'] == 'configuration_error'


@pytest.mark.django_db
class TestConfirmationEndpoints:

    def test_confirm_and_cancel(self, subscriber_client, user, live_subscription, today):
        tomorrow = today + timedelta(days=1)

        confirmed = subscriber_client.post(
            '/api/v1/confirmations', {'date': tomorrow.isoformat(), 'meal_type': 'dinner'}, format='json'
        )
        repeated = subscriber_client.post(
            '/api/v1/confirmations', {'date': tomorrow.isoformat(), 'meal_type': 'dinner'}, format='json'
        )
        cancelled = subscriber_client.post(
            '/api/v1/confirmations/cancel', {'date': tomorrow.isoformat(), 'meal_type': 'dinner'}, format='json'
        )

        assert confirmed.status_code == 201
        assert confirmed.data['is_confirmed'] is True
        assert repeated.status_code == 400
        assert cancelled.status_code == 200
        assert MealConfirmation.objects.get(user=user).is_confirmed is False

    def test_confirm_without_subscription(self, subscriber_client, today):
        response = subscriber_client.post(
            '/api/v1/confirmations', {'date': today.isoformat(), 'meal_type': 'dinner'}, format='json'
        )

        assert response.status_code == 403

    def test_bad_meal_type(self, subscriber_client, live_subscription, today):
        response = subscriber_client.post(
            '/api/v1/confirmations', {'date': today.isoformat(), 'meal_type': 'brunch'}, format='json'
        )

        assert response.status_code == 400
