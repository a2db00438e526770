"""
Serialized, retried execution of ledger write units.
"""
import logging
import time
from typing import Callable, Iterable, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .exceptions import StorageError
from .locks import member_locks

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Conflicts that a fresh attempt can resolve: a concurrent writer bumped the
# balance version, the database reported a transient failure, or a unique
# key was claimed between our read and our insert.
RETRYABLE_ERRORS = (StaleDataError, OperationalError, IntegrityError)


def run_serialized(brand_id: str, member_keys: Iterable[str], work: Callable[[], T],
                   operation: str = 'ledger write') -> T:
    """
    Run ``work`` under the member locks and commit it as one transaction.

    Retryable conflicts roll back and try again up to LEDGER_MAX_RETRIES
    times with linear backoff, then surface as StorageError. Any other
    exception rolls back and propagates unchanged.
    """
    member_keys = list(member_keys)
    max_retries = current_app.config.get('LEDGER_MAX_RETRIES', 3)
    backoff = current_app.config.get('LEDGER_RETRY_BACKOFF_SECONDS', 0.05)
    timeout = current_app.config.get('LEDGER_LOCK_TIMEOUT_SECONDS', 10)

    attempt = 0
    while True:
        attempt += 1
        try:
            with member_locks.hold(brand_id, member_keys, timeout=timeout):
                try:
                    result = work()
                    db.session.commit()
                except Exception:
                    db.session.rollback()
                    raise
            return result
        except RETRYABLE_ERRORS as e:
            if attempt > max_retries:
                logger.error(
                    '%s failed for brand %s members %s after %d attempts: %s',
                    operation, brand_id, member_keys, attempt, e
                )
                raise StorageError(f'{operation} failed after {attempt} attempts', e) from e
            logger.warning(
                '%s conflict for brand %s members %s (attempt %d): %s',
                operation, brand_id, member_keys, attempt, type(e).__name__
            )
            if backoff:
                time.sleep(backoff * attempt)
        except Exception:
            db.session.rollback()
            raise
