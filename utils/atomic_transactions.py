"""Atomic transaction utilities for order and ledger operations"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, TypeVar
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import OperationalError, DBAPIError

import database
from config import Config
from utils.exception_handler import OrderFlowError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def async_atomic_transaction(
    session: Optional[AsyncSession] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for atomic database transactions with proper rollback.

    Without a session a fresh one is opened and closed here. With a session,
    nesting depth is tracked so only the outermost block commits; inner blocks
    (e.g. a ledger hold inside an order acceptance) join the caller's unit.
    """
    session_provided = session is not None
    if not session_provided:
        session = database.AsyncSessionLocal()

    transaction_depth = getattr(session, '_atomic_transaction_depth', 0)
    try:
        setattr(session, '_atomic_transaction_depth', transaction_depth + 1)

        if transaction_depth > 0:
            logger.debug(f"Nested async transaction detected (depth: {transaction_depth + 1})")

        yield session

        if transaction_depth == 0:
            await session.commit()
            logger.debug("Outermost async transaction committed successfully")

    except OrderFlowError as e:
        await session.rollback()
        logger.info(f"Async transaction rolled back: {type(e).__name__}: {e.message}")
        raise
    except Exception as e:
        await session.rollback()
        logger.error(f"Async transaction rolled back due to error (depth: {transaction_depth + 1}): {e}")
        raise
    finally:
        current_depth = getattr(session, '_atomic_transaction_depth', 1)
        setattr(session, '_atomic_transaction_depth', max(0, current_depth - 1))
        if not session_provided:
            await session.close()


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, OperationalError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


async def run_atomic(
    operation: Callable[[AsyncSession], Awaitable[T]],
    retries: Optional[int] = None,
    backoff_seconds: float = 0.2,
) -> T:
    """
    Run `operation(session)` in its own transaction, retrying connectivity
    failures on a fresh session. Business errors are never retried.
    """
    attempts = max(1, Config.DB_RETRY_ATTEMPTS if retries is None else retries)
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            async with async_atomic_transaction() as session:
                return await operation(session)
        except OrderFlowError:
            raise
        except (OperationalError, DBAPIError) as e:
            if not _is_retryable(e) or attempt == attempts:
                raise
            last_error = e
            logger.warning(f"🔄 DB_RETRY: attempt {attempt}/{attempts} failed: {e}")
            await asyncio.sleep(backoff_seconds * attempt)

    # Loop either returns or raises
    raise last_error  # pragma: no cover


async def with_session(
    session: Optional[AsyncSession],
    operation: Callable[[AsyncSession], Awaitable[Any]],
) -> Any:
    """Join the caller's transaction when a session is given, otherwise run a retried one"""
    if session is not None:
        async with async_atomic_transaction(session) as joined:
            return await operation(joined)
    return await run_atomic(operation)
