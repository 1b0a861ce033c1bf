"""Retry of whole write operations after lock or serialization conflicts"""

import logging
import time
from typing import Callable, TypeVar

from billing_engine.config import settings
from billing_engine.domain.exceptions import TransactionConflict
from billing_engine.infrastructure.observability.metrics import record_conflict

T = TypeVar("T")

logger = logging.getLogger(__name__)


def run_with_conflict_retry(
    operation: Callable[[], T],
    operation_name: str,
    max_retries: int | None = None,
    backoff_base: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run an operation, re-running it from scratch on TransactionConflict.

    The operation must own its transaction (it rolled back before the
    conflict surfaced), so re-running it is safe. Backoff doubles per
    attempt: base, 2*base, 4*base...

    Raises:
        TransactionConflict: still conflicting after max_retries re-runs
    """
    max_retries = settings.settlement_max_retries if max_retries is None else max_retries
    backoff_base = settings.settlement_backoff_base if backoff_base is None else backoff_base

    attempt = 0
    while True:
        try:
            return operation()
        except TransactionConflict:
            record_conflict(operation_name)
            if attempt >= max_retries:
                logger.error(
                    f"{operation_name} gave up after {attempt + 1} conflicting attempts",
                    extra={"operation": operation_name},
                )
                raise
            backoff = backoff_base * (2**attempt)
            attempt += 1
            logger.warning(
                f"{operation_name} hit a transaction conflict, retrying in {backoff:.2f}s",
                extra={"operation": operation_name, "attempt": attempt},
            )
            sleep(backoff)
