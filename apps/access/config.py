"""Process-wide access configuration.

Built once from Django settings and treated as read-only afterwards. The
signing secret lives here and is handed to token issuers and verifiers at
construction; nothing else reads it from the environment.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from django.conf import settings

from apps.core.models import MEAL_TYPES

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Only ever used when DEBUG is on.
DEVELOPMENT_QR_SECRET = 'insecure-development-qr-secret'

DEFAULT_MEAL_TOKEN_VALIDITY_MINUTES = {
    'breakfast': 180,
    'lunch': 240,
    'dinner': 240,
}
DEFAULT_FALLBACK_VALIDITY_MINUTES = 120
DEFAULT_USER_TOKEN_VALIDITY_MINUTES = 30


@dataclass(frozen=True)
class AccessConfig:
    secret: bytes = field(repr=False)
    meal_token_validity_minutes: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_MEAL_TOKEN_VALIDITY_MINUTES)
    )
    fallback_validity_minutes: int = DEFAULT_FALLBACK_VALIDITY_MINUTES
    user_token_validity_minutes: int = DEFAULT_USER_TOKEN_VALIDITY_MINUTES
    db_timeout_seconds: float = 5.0
    retry_backoff_seconds: float = 0.2

    def __post_init__(self):
        if not self.secret:
            raise ConfigurationError("QR signing secret must not be empty")
        if self.user_token_validity_minutes <= 0 or self.fallback_validity_minutes <= 0:
            raise ConfigurationError("Token validity must be positive")
        for meal_type, minutes in self.meal_token_validity_minutes.items():
            if minutes <= 0:
                raise ConfigurationError(f"Token validity for {meal_type} must be positive")

    def meal_token_validity(self, meal_type) -> timedelta:
        minutes = self.meal_token_validity_minutes.get(meal_type, self.fallback_validity_minutes)
        return timedelta(minutes=minutes)

    @property
    def user_token_validity(self) -> timedelta:
        return timedelta(minutes=self.user_token_validity_minutes)

    @classmethod
    def from_settings(cls) -> 'AccessConfig':
        """Build the configuration from Django settings.

        Raises:
            ConfigurationError: no QR_SECRET outside DEBUG, or invalid values.
        """
        mess_config = getattr(settings, 'MESS_CONFIG', {}) or {}
        secret = getattr(settings, 'QR_SECRET', None)

        if not secret:
            if not settings.DEBUG:
                raise ConfigurationError("QR_SECRET is not set; refusing to serve meal redemption")
            logger.warning("QR_SECRET is not set, using the development fallback secret")
            secret = DEVELOPMENT_QR_SECRET

        validity = dict(DEFAULT_MEAL_TOKEN_VALIDITY_MINUTES)
        validity.update(mess_config.get('meal_token_validity_minutes', {}))
        unknown = set(validity) - set(MEAL_TYPES)
        if unknown:
            logger.info(f"Token validity configured for extra meal labels: {sorted(unknown)}")

        return cls(
            secret=secret.encode() if isinstance(secret, str) else secret,
            meal_token_validity_minutes=validity,
            fallback_validity_minutes=int(
                mess_config.get('fallback_token_validity_minutes', DEFAULT_FALLBACK_VALIDITY_MINUTES)
            ),
            user_token_validity_minutes=int(
                mess_config.get('user_token_validity_minutes', DEFAULT_USER_TOKEN_VALIDITY_MINUTES)
            ),
            db_timeout_seconds=float(mess_config.get('db_timeout_seconds', 5)),
            retry_backoff_seconds=float(mess_config.get('transient_retry_backoff_seconds', 0.2)),
        )


_config: Optional[AccessConfig] = None
_config_lock = threading.Lock()


def get_access_config() -> AccessConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = AccessConfig.from_settings()
    return _config


def reload_access_config() -> AccessConfig:
    """Re-read settings, e.g. after rotating QR_SECRET."""
    global _config
    new_config = AccessConfig.from_settings()
    with _config_lock:
        _config = new_config
    logger.info("Access configuration reloaded")
    return new_config
