"""Exceptions for meal access."""
from django.core.exceptions import ImproperlyConfigured


class MessAccessError(Exception):
    """Base exception for meal access errors."""
    pass


class ConfigurationError(MessAccessError, ImproperlyConfigured):
    """Access control cannot run with the current configuration."""
    pass


class TransientFailure(MessAccessError):
    """Storage timed out or was unavailable; the request may be retried."""
    pass
