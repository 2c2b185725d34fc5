"""Receipt number allocation.

Format ``CMP-YYYYMMDD-NNNN``: fixed prefix, the local calendar day, and a
1-based daily sequence zero-padded to four digits. The sequence comes from a
count of that day's complaints, which is not atomic with the insert, so a
uniqueness violation on insert is retried with a bumped candidate instead of
taking a lock.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Callable, TypeVar

from civildesk.domain.errors import ReceiptNumberExhaustedError
from civildesk.infra.repositories import UniqueViolationError

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "CMP"
MAX_ALLOCATION_ATTEMPTS = 5

_RECEIPT_RE = re.compile(rf"^{RECEIPT_PREFIX}-(\d{{8}})-(\d{{4,}})$")

T = TypeVar("T")


def receipt_day_prefix(day: date) -> str:
    return f"{RECEIPT_PREFIX}-{day:%Y%m%d}-"


def format_receipt_number(day: date, sequence: int) -> str:
    if sequence < 1:
        raise ValueError("Daily sequence starts at 1")
    return f"{receipt_day_prefix(day)}{sequence:04d}"


def next_receipt_number(now: datetime, today_count: int, attempt: int = 0) -> str:
    return format_receipt_number(now.date(), today_count + 1 + attempt)


def is_receipt_number(value: str) -> bool:
    match = _RECEIPT_RE.match(str(value or ""))
    if not match:
        return False
    try:
        datetime.strptime(match.group(1), "%Y%m%d")
    except ValueError:
        return False
    return int(match.group(2)) >= 1


def allocate_receipt_number(
    now: datetime,
    count_today: Callable[[str], int],
    insert: Callable[[str], T],
    max_attempts: int = MAX_ALLOCATION_ATTEMPTS,
) -> T:
    """Insert with a fresh receipt number, retrying on collisions.

    ``count_today`` receives the day prefix and returns how many complaints
    already carry it. ``insert`` receives the candidate and either returns the
    stored row or raises ``UniqueViolationError``.
    """
    prefix = receipt_day_prefix(now.date())
    for attempt in range(max_attempts):
        candidate = next_receipt_number(now, count_today(prefix), attempt)
        try:
            return insert(candidate)
        except UniqueViolationError:
            logger.debug("Receipt number %s taken (attempt %d/%d)", candidate, attempt + 1, max_attempts)
            continue
    logger.warning("Receipt number allocation exhausted after %d attempts for %s", max_attempts, prefix)
    raise ReceiptNumberExhaustedError()
