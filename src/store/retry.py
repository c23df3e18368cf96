"""Retry loop for optimistic transactions."""

import asyncio
import random

import structlog

from src.store.base import ThreadStore, TransactionConflictError, TransactionFn, T


logger = structlog.get_logger(__name__)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff with full jitter for the given 1-based attempt."""
    if base_delay <= 0:
        return 0.0
    ceiling = min(max_delay, base_delay * (2 ** (attempt - 1)))
    return random.uniform(0, ceiling)


async def run_with_retries(
    store: ThreadStore,
    fn: TransactionFn[T],
    *,
    max_attempts: int,
    base_delay: float = 0.0,
    max_delay: float = 0.0,
    operation: str = "transaction",
) -> T:
    """Run ``fn`` as a transaction, re-running it on stale reads.

    ``fn`` is re-invoked from scratch on every attempt, so it must derive
    its writes only from what it reads through the transaction.

    Raises:
        TransactionConflictError: If every attempt hit a conflict.
    """
    last_error: TransactionConflictError | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await store.run_transaction(fn)
        except TransactionConflictError as e:
            last_error = e
            logger.info(
                "transaction_conflict",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
            )
            if attempt < max_attempts:
                await asyncio.sleep(backoff_delay(attempt, base_delay, max_delay))

    logger.warning(
        "transaction_retries_exhausted",
        operation=operation,
        max_attempts=max_attempts,
    )
    raise last_error or TransactionConflictError()
