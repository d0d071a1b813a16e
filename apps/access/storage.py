"""Storage call guard shared by the access services."""
import logging
from contextlib import contextmanager

from django.db import DatabaseError, IntegrityError

from .exceptions import TransientFailure

logger = logging.getLogger(__name__)


@contextmanager
def storage_call(operation):
    """Turn storage outages and timeouts into TransientFailure.

    IntegrityError passes through untouched; callers that rely on a
    uniqueness constraint handle it themselves.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DatabaseError as exc:
        logger.warning(f"Storage failure during {operation}: {exc}")
        raise TransientFailure(f"{operation} failed: {exc}") from exc
