"""Background dashboard runs with last-request-wins semantics.

Submitting a new range cancels whatever aggregation is still in flight. A run
publishes its outcome only if no newer submission happened in the meantime,
so ``latest()`` always describes the most recent request:

    submit(A) -> pending(A)
    submit(B) -> A cancelled, pending(B)
    B done    -> ok(B) | error(B)
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from functools import lru_cache

import structlog

from app.core.exceptions import AnalyticsError, DataFetchFailedError
from app.core.logging import get_logger
from app.features.analytics.periods import DateRange
from app.features.analytics.schemas import (
    AggregationResult,
    AggregationStatus,
    Dataset,
    DashboardSnapshot,
)
from app.features.analytics.service import DashboardAggregator

logger = get_logger(__name__)


class DashboardRunner:
    """Holds the single current background aggregation."""

    def __init__(self) -> None:
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._latest: AggregationResult | None = None

    def latest(self) -> AggregationResult | None:
        """Outcome of the most recent submission, or None before any."""
        return self._latest

    def submit(
        self,
        aggregator: DashboardAggregator,
        period: DateRange,
        timeout_seconds: float | None = None,
    ) -> AggregationResult:
        """Start aggregating ``period`` and supersede any in-flight run.

        Must be called from a running event loop.

        Args:
            aggregator: Aggregator to compute the snapshot with.
            period: Already validated date range.
            timeout_seconds: Abort the run after this long (optional).

        Returns:
            The pending result for the new submission.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()

        self._generation += 1
        pending = AggregationResult(
            run_id=uuid.uuid4().hex,
            status=AggregationStatus.PENDING,
            start_date=period.start,
            end_date=period.end,
            submitted_at=datetime.now(UTC),
        )
        self._latest = pending
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation, pending, aggregator, period, timeout_seconds)
        )

        logger.info(
            "analytics.run_submitted",
            run_id=pending.run_id,
            start_date=str(period.start),
            end_date=str(period.end),
        )
        return pending

    async def wait(self) -> AggregationResult | None:
        """Wait for the current run to settle and return the latest result."""
        task = self._task
        if task is not None:
            # A superseded task ends cancelled; that is not an error here
            await asyncio.gather(task, return_exceptions=True)
        return self._latest

    async def aclose(self) -> None:
        """Cancel the in-flight run, if any."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(
        self,
        generation: int,
        pending: AggregationResult,
        aggregator: DashboardAggregator,
        period: DateRange,
        timeout_seconds: float | None,
    ) -> None:
        with structlog.contextvars.bound_contextvars(run_id=pending.run_id):
            try:
                snapshot = await asyncio.wait_for(
                    aggregator.compute_snapshot(period.start, period.end),
                    timeout=timeout_seconds,
                )
            except asyncio.CancelledError:
                logger.info("analytics.run_cancelled")
                raise
            except TimeoutError:
                result = _failed(pending, "AGGREGATION_TIMEOUT", "Dashboard aggregation timed out")
            except AnalyticsError as e:
                dataset = Dataset(e.dataset) if isinstance(e, DataFetchFailedError) else None
                result = _failed(pending, e.code, e.message, dataset)
            except Exception as e:
                logger.exception("analytics.run_crashed", error=str(e))
                result = _failed(pending, "INTERNAL_ERROR", "An unexpected error occurred")
            else:
                result = _succeeded(pending, snapshot)

            if generation != self._generation:
                logger.info("analytics.run_discarded", status=result.status.value)
                return

            self._latest = result
            logger.info(
                "analytics.run_completed",
                status=result.status.value,
                error_code=result.error_code,
            )


def _succeeded(pending: AggregationResult, snapshot: DashboardSnapshot) -> AggregationResult:
    return pending.model_copy(
        update={
            "status": AggregationStatus.OK,
            "snapshot": snapshot,
            "completed_at": datetime.now(UTC),
        }
    )


def _failed(
    pending: AggregationResult,
    code: str,
    message: str,
    dataset: Dataset | None = None,
) -> AggregationResult:
    return pending.model_copy(
        update={
            "status": AggregationStatus.ERROR,
            "error_code": code,
            "error_message": message,
            "dataset": dataset,
            "completed_at": datetime.now(UTC),
        }
    )


@lru_cache
def get_runner() -> DashboardRunner:
    """Process-wide runner singleton."""
    return DashboardRunner()
