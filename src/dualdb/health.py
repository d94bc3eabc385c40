"""Health report model and the probe that fills it.

The probe runs the active dialect's trivial read and never raises: every
failure, including a timeout, becomes an ``unhealthy`` report.

Quick start::

    report = await check_driver(driver)
    if report.status != "healthy":
        ...
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel

from dualdb.logging import get_logger

if TYPE_CHECKING:
    from dualdb.drivers.base import DatabaseDriver

logger = get_logger(__name__)

NOT_INITIALIZED = "Database not initialized"


class HealthReport(BaseModel):
    """Outcome of one health probe.

    Fields
    ──────
    status     : ``healthy`` | ``unhealthy``
    engine     : engine kind value, None when no engine is up
    timestamp  : database time on PostgreSQL, ISO-8601 UTC otherwise
    error      : failure message when unhealthy
    latency_ms : round-trip time of the probe
    """

    status: Literal["healthy", "unhealthy"]
    engine: str | None = None
    timestamp: str | None = None
    error: str | None = None
    latency_ms: float | None = None

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


def not_initialized(engine: str | None = None) -> HealthReport:
    return HealthReport(status="unhealthy", engine=engine, error=NOT_INITIALIZED)


async def check_driver(driver: DatabaseDriver, timeout_s: float = 5.0) -> HealthReport:
    """Run the health query on ``driver`` and report."""
    engine = driver.engine.value
    start = time.monotonic()
    try:
        row = await asyncio.wait_for(driver.get(driver.dialect.health_query()), timeout=timeout_s)
    except TimeoutError:
        logger.warning("health_check_failed", engine=engine, error="timeout")
        return HealthReport(status="unhealthy", engine=engine, error="timeout")
    except Exception as exc:  # noqa: BLE001
        logger.warning("health_check_failed", engine=engine, error=str(exc))
        return HealthReport(status="unhealthy", engine=engine, error=str(exc))

    elapsed = round((time.monotonic() - start) * 1000, 2)
    db_time = (row or {}).get("current_time")
    if isinstance(db_time, datetime):
        timestamp = db_time.isoformat()
    elif db_time is not None:
        timestamp = str(db_time)
    else:
        timestamp = datetime.now(UTC).isoformat()
    return HealthReport(status="healthy", engine=engine, timestamp=timestamp, latency_ms=elapsed)


__all__ = [
    "HealthReport",
    "NOT_INITIALIZED",
    "check_driver",
    "not_initialized",
]
