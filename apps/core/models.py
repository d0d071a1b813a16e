from datetime import time, timedelta

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
import hashlib
import secrets


MEAL_CHOICES = [
    ('breakfast', 'Breakfast'),
    ('lunch', 'Lunch'),
    ('dinner', 'Dinner'),
]

MEAL_TYPES = [value for value, _ in MEAL_CHOICES]


def all_meals_included():
    return {meal_type: True for meal_type in MEAL_TYPES}


class Mess(models.Model):
    """A canteen and its geofence anchor."""

    name = models.CharField(max_length=100)
    code = models.CharField(max_length=20, unique=True)

    latitude = models.FloatField(
        null=True,
        validators=[MinValueValidator(-90), MaxValueValidator(90)],
    )
    longitude = models.FloatField(
        null=True,
        validators=[MinValueValidator(-180), MaxValueValidator(180)],
    )
    radius_meters = models.PositiveIntegerField(
        default=200,
        validators=[MinValueValidator(10), MaxValueValidator(5000)],
    )

    breakfast_start = models.TimeField(default=time(7, 0))
    breakfast_end = models.TimeField(default=time(10, 0))
    lunch_start = models.TimeField(default=time(12, 0))
    lunch_end = models.TimeField(default=time(15, 0))
    dinner_start = models.TimeField(default=time(19, 0))
    dinner_end = models.TimeField(default=time(22, 0))

    qr_validity_minutes = models.PositiveIntegerField(
        default=30,
        validators=[MinValueValidator(5), MaxValueValidator(240)],
    )
    allow_meal_confirmation = models.BooleanField(default=False)
    confirmation_deadline_hours = models.PositiveIntegerField(
        default=2,
        validators=[MinValueValidator(1), MaxValueValidator(24)],
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.code})"

    @property
    def has_geofence(self):
        return self.latitude is not None and self.longitude is not None

    def meal_window(self, meal_type):
        """Return (start, end) service times for a meal."""
        return getattr(self, f'{meal_type}_start'), getattr(self, f'{meal_type}_end')

    def current_meal_type(self, now=None):
        """Meal whose service window contains the local time, or None."""
        local_time = timezone.localtime(now or timezone.now()).time()
        for meal_type in MEAL_TYPES:
            start, end = self.meal_window(meal_type)
            if start <= local_time <= end:
                return meal_type
        return None

    class Meta:
        db_table = 'messes'
        verbose_name_plural = 'messes'


class Subscription(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('active', 'Active'),
        ('paused', 'Paused'),
        ('expired', 'Expired'),
        ('cancelled', 'Cancelled'),
    ]

    PAYMENT_STATUS_CHOICES = [
        ('paid', 'Paid'),
        ('pending', 'Pending'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='subscriptions')
    mess = models.ForeignKey(Mess, on_delete=models.CASCADE, related_name='subscriptions')
    start_date = models.DateField()
    end_date = models.DateField()
    # Cache of the date/payment derivation, never trusted for gating.
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    payment_status = models.CharField(max_length=10, choices=PAYMENT_STATUS_CHOICES, default='pending')
    meals_included = models.JSONField(default=all_meals_included)
    archived_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.user} @ {self.mess.code} - {self.start_date} to {self.end_date}"

    def includes_meal(self, meal_type):
        return bool((self.meals_included or {}).get(meal_type))

    class Meta:
        db_table = 'subscriptions'
        indexes = [
            models.Index(fields=['user', 'mess', 'start_date', 'end_date'], name='idx_active_subscription'),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(end_date__gt=models.F('start_date')), name='subscription_end_after_start'),
        ]


class MealConfirmation(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='meal_confirmations')
    mess = models.ForeignKey(Mess, on_delete=models.CASCADE, related_name='meal_confirmations')
    date = models.DateField()
    meal_type = models.CharField(max_length=10, choices=MEAL_CHOICES)
    is_confirmed = models.BooleanField(default=False)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    confirmation_deadline = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    # Set in the same transaction as the attendance record
    redeemed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        state = 'confirmed' if self.is_confirmed else 'not confirmed'
        return f"{self.user} - {self.meal_type} {self.date} ({state})"

    class Meta:
        db_table = 'meal_confirmations'
        unique_together = ['user', 'date', 'meal_type']


class MealTokenQuerySet(models.QuerySet):

    def live(self, now=None):
        now = now or timezone.now()
        return self.filter(expires_at__gte=now, consumed_at__isnull=True)

    def for_slot(self, mess, meal_type, date):
        return self.filter(mess=mess, meal_type=meal_type, date=date)


class MealToken(models.Model):
    """Registry entry for a meal-scoped token, keyed by (mess, meal_type, date)."""

    scope = 'meal'
    subject = None

    code = models.CharField(max_length=64, unique=True)
    mess = models.ForeignKey(Mess, on_delete=models.CASCADE, related_name='meal_tokens')
    meal_type = models.CharField(max_length=10, choices=MEAL_CHOICES)
    date = models.DateField()
    issued_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    consumed_at = models.DateTimeField(null=True, blank=True)
    consumed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    objects = MealTokenQuerySet.as_manager()

    def __str__(self):
        return f"{self.mess.code} {self.meal_type} {self.date}"

    @property
    def validity_minutes(self):
        return int((self.expires_at - self.issued_at).total_seconds() // 60)

    def is_expired(self, now=None):
        return (now or timezone.now()) > self.expires_at

    class Meta:
        db_table = 'meal_tokens'
        indexes = [
            models.Index(fields=['mess', 'meal_type', 'date', 'expires_at'], name='idx_meal_token_slot'),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(expires_at__gt=models.F('issued_at')), name='meal_token_expires_after_issue'),
        ]


class AttendanceRecord(models.Model):
    SCAN_METHOD_CHOICES = [
        ('qr', 'QR'),
        ('manual', 'Manual'),
    ]

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='attendance_records')
    mess = models.ForeignKey(Mess, on_delete=models.PROTECT, related_name='attendance_records')
    subscription = models.ForeignKey(Subscription, on_delete=models.PROTECT, related_name='attendance_records')
    scan_date = models.DateField()
    meal_type = models.CharField(max_length=10, choices=MEAL_CHOICES)
    scan_time = models.DateTimeField()
    geo_location = models.JSONField(null=True, blank=True)
    distance_from_mess = models.FloatField(null=True, blank=True)
    is_valid = models.BooleanField(default=True)
    validation_errors = models.JSONField(default=list)
    scan_method = models.CharField(max_length=10, choices=SCAN_METHOD_CHOICES, default='qr')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user} - {self.meal_type} {self.scan_date} ({'valid' if self.is_valid else 'invalid'})"

    class Meta:
        db_table = 'attendance_records'
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'scan_date', 'meal_type'],
                condition=Q(is_valid=True),
                name='idx_unique_meal_attendance',
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'scan_date', 'meal_type', 'is_valid'], name='idx_attendance_lookup'),
        ]


class StaffToken(models.Model):
    label = models.CharField(max_length=100)
    mess = models.ForeignKey(Mess, on_delete=models.CASCADE, related_name='staff_tokens')
    issued_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    active = models.BooleanField(default=True)
    token_hash = models.CharField(max_length=64, unique=True)

    def __str__(self):
        return f"{self.label} - {'Active' if self.active else 'Inactive'}"

    @staticmethod
    def hash_token(token):
        return hashlib.sha256(token.encode()).hexdigest()

    @classmethod
    def create_token(cls, label, mess, expires_days=None):
        if expires_days is None:
            expires_days = getattr(settings, 'STAFF_TOKEN_EXPIRY_DAYS', 30)
        token = secrets.token_urlsafe(32)

        expires_at = None
        if expires_days:
            expires_at = timezone.now() + timedelta(days=expires_days)

        staff_token = cls.objects.create(
            label=label,
            mess=mess,
            expires_at=expires_at,
            token_hash=cls.hash_token(token),
        )

        return staff_token, token

    class Meta:
        db_table = 'staff_tokens'


class AuditLog(models.Model):
    ACTOR_TYPE_CHOICES = [
        ('SUBSCRIBER', 'Subscriber'),
        ('STAFF', 'Staff'),
        ('SYSTEM', 'System'),
    ]

    actor_type = models.CharField(max_length=10, choices=ACTOR_TYPE_CHOICES)
    actor_id = models.CharField(max_length=50, null=True, blank=True)
    event_type = models.CharField(max_length=50)
    payload = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.actor_type} - {self.event_type} - {self.created_at}"

    class Meta:
        db_table = 'audit_logs'
