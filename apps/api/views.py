# Views for api app

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from django.utils import timezone

from apps.access.confirmations import ConfirmationError, cancel_meal_confirmation, confirm_meal
from apps.access.exceptions import ConfigurationError, TransientFailure
from apps.access.redemption import RedemptionService, RedemptionStatus
from apps.access.tokens import TokenIssuer
from apps.core.models import AuditLog, Subscription
from apps.utils.qr_utils import generate_qr_image
from .permissions import IsStaffUser, IsSubscriber
from .serializers import (
    AttendanceRecordSerializer,
    MealConfirmationRequestSerializer,
    MealConfirmationSerializer,
    MealTokenRequestSerializer,
    MealTokenSerializer,
    RedemptionRequestSerializer,
)

logger = logging.getLogger(__name__)

RESULT_STATUS_CODES = {
    RedemptionStatus.REDEEMED: status.HTTP_201_CREATED,
    RedemptionStatus.INVALID_TOKEN: status.HTTP_400_BAD_REQUEST,
    RedemptionStatus.INELIGIBLE: status.HTTP_403_FORBIDDEN,
    RedemptionStatus.OUT_OF_RANGE: status.HTTP_403_FORBIDDEN,
    RedemptionStatus.ALREADY_REDEEMED: status.HTTP_409_CONFLICT,
}

TRY_AGAIN = {
    'result': 'transient_failure',
    'message': 'Something went wrong on our side. Please try again.',
}

MISCONFIGURED = {
    'result': 'configuration_error',
    'message': 'This mess is not set up for scanning yet. Please contact the mess office.',
}


def _token_payload(token):
    data = MealTokenSerializer(token).data
    data['qr_image'] = generate_qr_image(token.code)
    return data


def _redemption_response(result, actor_type, actor_id):
    """Map a redemption outcome to its HTTP answer and audit it"""
    # Token failure detail stays in the audit log
    public_reason = None if result.status == RedemptionStatus.INVALID_TOKEN else result.reason
    body = {
        'result': result.status,
        'reason': public_reason,
        'message': result.message,
        'meal_type': result.meal_type,
        'distance': result.distance,
    }
    if result.record is not None:
        body['attendance'] = AttendanceRecordSerializer(result.record).data

    AuditLog.objects.create(
        actor_type=actor_type,
        actor_id=actor_id,
        event_type='MEAL_REDEEMED' if result.redeemed else 'REDEMPTION_REJECTED',
        payload={
            'result': result.status,
            'reason': result.reason,
            'meal_type': result.meal_type,
            'date': result.date.isoformat() if result.date else None,
            'distance': result.distance,
        }
    )
    return Response(body, status=RESULT_STATUS_CODES[result.status])


@api_view(['POST'])
@permission_classes([IsStaffUser])
def issue_meal_token(request):
    """Issue (or return the live) meal-scoped token for the scanner's mess"""
    serializer = MealTokenRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    mess = request.user.mess
    now = timezone.now()

    meal_type = serializer.validated_data.get('meal_type') or mess.current_meal_type(now)
    if meal_type is None:
        return Response(
            {'error': 'No meal service available at this time'},
            status=status.HTTP_400_BAD_REQUEST
        )

    try:
        token = TokenIssuer().issue_meal_token(
            mess,
            meal_type,
            serializer.validated_data.get('date') or timezone.localdate(now),
            validity_minutes=serializer.validated_data.get('validity_minutes'),
        )
    except TransientFailure:
        return Response(TRY_AGAIN, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response(_token_payload(token), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsStaffUser])
def daily_meal_tokens(request):
    """Live tokens for every meal of a day"""
    serializer = MealTokenRequestSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    day = serializer.validated_data.get('date') or timezone.localdate()

    try:
        tokens = TokenIssuer().issue_daily_meal_tokens(request.user.mess, day)
    except TransientFailure:
        return Response(TRY_AGAIN, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response({
        'date': day.isoformat(),
        'tokens': {meal_type: _token_payload(token) for meal_type, token in tokens.items()},
    })


@api_view(['GET'])
@permission_classes([IsSubscriber])
def my_user_token(request):
    """Signed personal token for the signed-in subscriber"""
    serializer = MealTokenRequestSerializer(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    meal_type = serializer.validated_data.get('meal_type')
    if not meal_type:
        return Response({'error': 'meal_type is required'}, status=status.HTTP_400_BAD_REQUEST)

    token = TokenIssuer().issue_user_token(request.user.pk, meal_type, timezone.localdate())
    return Response({
        'code': token.code,
        'qr_image': generate_qr_image(token.code),
        'meal_type': token.meal_type,
        'date': token.date.isoformat(),
        'expires_at': token.expires_at.isoformat(),
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsSubscriber])
def redeem(request):
    """Subscriber scans the meal QR displayed at the mess"""
    serializer = RedemptionRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        result = RedemptionService().redeem_meal_token(
            request.user,
            data['token'],
            data.get('geo_location'),
            meal_type=data.get('meal_type'),
            scan_method=data['scan_method'],
        )
    except TransientFailure:
        logger.warning(f"Redemption unavailable for user {request.user.pk}")
        return Response(TRY_AGAIN, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    except ConfigurationError as exc:
        logger.error(f"Redemption misconfigured for user {request.user.pk}: {exc}")
        return Response(MISCONFIGURED, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return _redemption_response(result, 'SUBSCRIBER', str(request.user.pk))


@api_view(['POST'])
@permission_classes([IsStaffUser])
def scanner_scan(request):
    """Scanner device reads a subscriber's personal QR"""
    serializer = RedemptionRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    staff_token = request.user.staff_token

    try:
        result = RedemptionService().redeem_user_token(
            data['token'],
            request.user.mess,
            data.get('geo_location'),
            meal_type=data.get('meal_type'),
            scan_method=data['scan_method'],
        )
    except TransientFailure:
        logger.warning(f"Redemption unavailable for scanner {staff_token.label}")
        return Response(TRY_AGAIN, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    except ConfigurationError as exc:
        logger.error(f"Redemption misconfigured for scanner {staff_token.label}: {exc}")
        return Response(MISCONFIGURED, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return _redemption_response(result, 'STAFF', str(staff_token.pk))


@api_view(['POST'])
@permission_classes([IsSubscriber])
def confirm_meal_view(request):
    """Confirm attendance for an upcoming meal"""
    serializer = MealConfirmationRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    day = serializer.validated_data['date']

    subscription = Subscription.objects.select_related('mess').filter(
        user=request.user,
        start_date__lte=day,
        end_date__gte=day,
        archived_at__isnull=True,
    ).order_by('-start_date', '-created_at').first()
    if subscription is None:
        return Response(
            {'error': 'No subscription for the selected date'},
            status=status.HTTP_403_FORBIDDEN
        )

    try:
        confirmation = confirm_meal(
            request.user, subscription.mess, day, serializer.validated_data['meal_type']
        )
    except ConfirmationError as exc:
        return Response({'error': str(exc)}, status=status.HTTP_400_BAD_REQUEST)

    return Response(MealConfirmationSerializer(confirmation).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsSubscriber])
def cancel_meal_view(request):
    """Withdraw a meal confirmation"""
    serializer = MealConfirmationRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        confirmation = cancel_meal_confirmation(
            request.user,
            serializer.validated_data['date'],
            serializer.validated_data['meal_type'],
        )
    except ConfirmationError as exc:
        return Response({'error': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    except TransientFailure:
        return Response(TRY_AGAIN, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response(MealConfirmationSerializer(confirmation).data)
