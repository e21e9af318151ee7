"""
Check-and-flip helper.

Every state change follows the same loop: read the record, re-validate the
current state, write the new state conditioned on the version that was
read. If another writer got there first, re-read and re-validate; the guard
may now refuse (the job is no longer open), which is exactly the answer the
losing caller should get.
"""

import logging
from typing import Callable, Optional, Tuple, TypeVar

from errandwork.errors import InternalError, NotFoundError
from errandwork.types import RecordNotFoundError, VersionConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 5


def update_with_retry(
    load: Callable[[], Optional[T]],
    mutate: Callable[[T], Optional[T]],
    save: Callable[[T, int], T],
    what: str,
    attempts: int = DEFAULT_ATTEMPTS,
) -> Tuple[T, bool]:
    """Apply ``mutate`` to the current record with compare-and-set.

    Args:
        load: Returns the current record (with ``version``) or None.
        mutate: Receives the current record. Returns the updated record, or
            None if no write is needed. Raises a MarketplaceError when the
            current state forbids the change.
        save: ``save(record, expected_version)``; raises VersionConflictError.
        what: Label for errors and logs, e.g. "job job-1".

    Returns:
        (record, changed) where ``changed`` is False if mutate asked for no write.
    """
    for attempt in range(1, attempts + 1):
        current = load()
        if current is None:
            raise NotFoundError(f"{what} not found")
        updated = mutate(current)
        if updated is None:
            return current, False
        try:
            return save(updated, current.version), True
        except VersionConflictError as e:
            logger.warning(f"Race condition detected on {what} (attempt {attempt}): {e}")
        except RecordNotFoundError as e:
            raise NotFoundError(f"{what} not found") from e
    raise InternalError(f"{what} kept changing; gave up after {attempts} attempts")
