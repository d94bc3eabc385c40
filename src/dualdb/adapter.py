"""Placeholder/result adapter: stateless helpers over the active dialect.

These are the translation steps the facade runs around every dispatch, kept
as plain functions so they can be used (and tested) without a live driver.
The engine is always passed explicitly; nothing here reads global state.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from dualdb.dialect import get_dialect
from dualdb.engine import EngineKind
from dualdb.logging import get_logger
from dualdb.types import Operation, TransactionHandle

if TYPE_CHECKING:
    from dualdb.drivers.base import DatabaseDriver

logger = get_logger(__name__)

T = TypeVar("T")


def convert_placeholders(sql: str, engine: EngineKind | str) -> str:
    """Rewrite canonical ``?`` markers for ``engine``.

    Convert once per statement. Feeding PostgreSQL output back through the
    SQLite direction discards the ``$n`` numbering.
    """
    return get_dialect(engine).convert_placeholders(sql)


def convert_result(raw: Any, operation: Operation, engine: EngineKind | str) -> Any:
    """Normalize a driver outcome; ``execute`` always yields ``WriteResult``."""
    return get_dialect(engine).convert_result(raw, operation)


def get_limit_syntax(engine: EngineKind | str, limit_index: int = 1, offset_index: int = 2) -> str:
    return get_dialect(engine).limit_clause(limit_index, offset_index)


def get_like_syntax(engine: EngineKind | str, column: str, param_index: int = 1) -> str:
    return get_dialect(engine).like_clause(column, param_index)


async def rollback_after_failure(driver: DatabaseDriver, handle: TransactionHandle) -> None:
    """Roll back after a failed unit of work; a rollback error is only logged."""
    if handle.closed:
        return
    try:
        await driver.rollback(handle)
    except Exception as rollback_exc:
        logger.error(
            "transaction_rollback_failed",
            engine=handle.engine.value,
            transaction=handle.id,
            error=str(rollback_exc),
        )


async def handle_transaction(
    driver: DatabaseDriver,
    callback: Callable[[TransactionHandle], Awaitable[T]],
) -> T:
    """Run ``callback`` between begin and commit on ``driver``.

    The callback always receives a handle, whatever the engine. Any exception
    (cancellation included) rolls the transaction back and is re-raised
    unchanged. A failing rollback is logged and never masks the original error.
    """
    handle = await driver.begin()
    try:
        result = await callback(handle)
    except BaseException:
        await rollback_after_failure(driver, handle)
        raise
    await driver.commit(handle)
    return result


__all__ = [
    "convert_placeholders",
    "convert_result",
    "get_limit_syntax",
    "get_like_syntax",
    "handle_transaction",
    "rollback_after_failure",
]
