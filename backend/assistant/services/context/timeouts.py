from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Generic, Optional, TypeVar, Union

from assistant.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

STATUS_OK = "ok"
STATUS_TIMEOUT = "timeout"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class SourceOutcome:
    label: str
    status: str
    elapsed_ms: int

    @property
    def degraded(self) -> bool:
        return self.status in (STATUS_TIMEOUT, STATUS_ERROR)


@dataclass(frozen=True)
class RaceResult(Generic[T]):
    value: T
    outcome: SourceOutcome


async def race_with_timeout(
    awaitable: Union[Awaitable[T], "asyncio.Future[T]"],
    timeout: Optional[float],
    default: T,
    *,
    label: str,
) -> RaceResult[T]:
    """Wait up to `timeout` seconds for `awaitable`.

    A loser is cancelled, not abandoned, so its I/O is released. Timeouts and
    errors both degrade to `default`; only cancellation of the caller propagates.
    """
    task = asyncio.ensure_future(awaitable)
    started = time.monotonic()
    try:
        value = await asyncio.wait_for(task, timeout=timeout)
        status = STATUS_OK
    except asyncio.TimeoutError:
        logger.warning(f"{label} did not finish within {timeout}s; continuing without it")
        value, status = default, STATUS_TIMEOUT
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"{label} failed; continuing without it: {e}")
        value, status = default, STATUS_ERROR
    elapsed_ms = int((time.monotonic() - started) * 1000)
    return RaceResult(value=value, outcome=SourceOutcome(label=label, status=status, elapsed_ms=elapsed_ms))
