import functools
import logging
import time

from django.conf import settings
from django.db import InterfaceError, OperationalError

from ..exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

# Errors the database raises for lost connections, lock timeouts,
# serialization failures and the like
TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError)


def backoff_delay(attempt):
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return settings.LEDGER_RETRY_BACKOFF_SECONDS * (2 ** attempt)


def translate_store_errors(func):
    """Write paths: surface transient store failures as StoreUnavailable.

    The failed atomic block has already rolled back, nothing is retried here.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TRANSIENT_STORE_ERRORS as exc:
            logger.warning("Store error in %s: %s", func.__name__, exc)
            raise StoreUnavailable(f"Database unavailable: {exc}") from exc

    return wrapper


def read_with_retry(func):
    """Read paths: retry transient store failures with backoff, then give up."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max(1, settings.LEDGER_READ_MAX_ATTEMPTS)
        for attempt in range(attempts):
            try:
                return func(*args, **kwargs)
            except TRANSIENT_STORE_ERRORS as exc:
                if attempt + 1 >= attempts:
                    logger.error("Store still failing after %d attempts in %s: %s",
                                 attempts, func.__name__, exc)
                    raise StoreUnavailable(f"Database unavailable: {exc}") from exc
                logger.warning("Store error in %s (attempt %d/%d): %s",
                               func.__name__, attempt + 1, attempts, exc)
                time.sleep(backoff_delay(attempt))

    return wrapper
