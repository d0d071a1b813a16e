from rest_framework import serializers
from apps.core.models import MEAL_CHOICES, AttendanceRecord, MealConfirmation, MealToken


class RedemptionRequestSerializer(serializers.Serializer):
    token = serializers.CharField(trim_whitespace=True)
    # Validated by the geofence so a missing location is a typed rejection
    geo_location = serializers.JSONField(required=False, allow_null=True)
    meal_type = serializers.ChoiceField(choices=MEAL_CHOICES, required=False, allow_null=True)
    scan_method = serializers.ChoiceField(choices=AttendanceRecord.SCAN_METHOD_CHOICES, default='qr')


class MealTokenRequestSerializer(serializers.Serializer):
    meal_type = serializers.ChoiceField(choices=MEAL_CHOICES, required=False)
    date = serializers.DateField(required=False)
    validity_minutes = serializers.IntegerField(min_value=1, max_value=24 * 60, required=False)


class MealTokenSerializer(serializers.ModelSerializer):
    mess_code = serializers.CharField(source='mess.code', read_only=True)
    # How often a scanner display should re-fetch its token
    refresh_minutes = serializers.IntegerField(source='mess.qr_validity_minutes', read_only=True)

    class Meta:
        model = MealToken
        fields = ['code', 'mess_code', 'meal_type', 'date', 'issued_at',
                  'expires_at', 'validity_minutes', 'refresh_minutes']


class MealConfirmationRequestSerializer(serializers.Serializer):
    date = serializers.DateField()
    meal_type = serializers.ChoiceField(choices=MEAL_CHOICES)


class MealConfirmationSerializer(serializers.ModelSerializer):
    class Meta:
        model = MealConfirmation
        fields = ['id', 'date', 'meal_type', 'is_confirmed', 'confirmed_at',
                  'confirmation_deadline', 'cancelled_at', 'redeemed_at']


class AttendanceRecordSerializer(serializers.ModelSerializer):
    mess_code = serializers.CharField(source='mess.code', read_only=True)

    class Meta:
        model = AttendanceRecord
        fields = ['id', 'user', 'mess_code', 'subscription', 'scan_date',
                  'meal_type', 'scan_time', 'geo_location', 'distance_from_mess',
                  'is_valid', 'scan_method']
