"""API routes for the admin analytics dashboard.

These endpoints compute the dashboard snapshot for a date range, run it in
the background with last-request-wins semantics, and expose the admin lookup
tools (recent transformations, per-user photo history).
"""

import asyncio
from datetime import date

from fastapi import APIRouter, Depends, Query, status

from app.core.config import get_settings
from app.core.database import get_session_maker
from app.core.exceptions import AggregationTimeoutError, NotFoundError
from app.core.logging import get_logger
from app.features.analytics.datasource import DataSource, SQLAlchemyDataSource
from app.features.analytics.runner import DashboardRunner, get_runner
from app.features.analytics.schemas import (
    AggregationResult,
    DashboardRunRequest,
    DashboardSnapshot,
    TransformationDetail,
    UserTransformationsResponse,
)
from app.features.analytics.service import DashboardAggregator

logger = get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


def get_data_source() -> DataSource:
    """Dependency providing the database-backed data source."""
    return SQLAlchemyDataSource(get_session_maker(), get_settings().tzinfo)


def get_aggregator(source: DataSource = Depends(get_data_source)) -> DashboardAggregator:
    """Dependency providing an aggregator bound to the data source."""
    return DashboardAggregator(source)


# =============================================================================
# Dashboard Endpoints
# =============================================================================


@router.get(
    "/dashboard",
    response_model=DashboardSnapshot,
    summary="Compute the dashboard snapshot",
    description="""
Compute every dashboard metric for a date range and the preceding period of
equal length.

**Metrics Computed**:
- `summary`: signups, transformation volume, reprocessing rate, contracted
  plans and revenue for the current and previous period, with % deltas
- `daily` / `revenue`: one entry per day in the range, zero-filled
- `funnel`: how many of the period's signups confirmed their e-mail, picked a
  style, ran a transformation and bought credits
- `popular_styles` / `popular_plans`: top styles and contracted plans
- `payment_stats`: pending vs confirmed charges, average ticket

**Date Range**:
- Both dates are inclusive; omit both for the last 7 days
- Omitting only `end_date` runs the range to today
- Maximum range is configurable (default 730 days)

**Errors**: any failed read fails the whole request with `DATA_FETCH_FAILED`
naming the dataset; there is no partial dashboard.
""",
)
async def get_dashboard(
    start_date: date | None = Query(
        None,
        description="First day of the period (inclusive). Format: YYYY-MM-DD.",
    ),
    end_date: date | None = Query(
        None,
        description="Last day of the period (inclusive). Format: YYYY-MM-DD.",
    ),
    aggregator: DashboardAggregator = Depends(get_aggregator),
) -> DashboardSnapshot:
    """Compute the dashboard snapshot for a date range.

    Args:
        start_date: First day of the period (optional).
        end_date: Last day of the period (optional).
        aggregator: Dashboard aggregator.

    Returns:
        Dashboard snapshot.

    Raises:
        AggregationTimeoutError: If the computation exceeds the configured timeout.
    """
    timeout = aggregator.settings.analytics_timeout_seconds
    try:
        return await asyncio.wait_for(
            aggregator.compute_snapshot(start_date=start_date, end_date=end_date),
            timeout=timeout,
        )
    except TimeoutError as e:
        logger.warning(
            "analytics.dashboard_timed_out",
            start_date=str(start_date) if start_date else None,
            end_date=str(end_date) if end_date else None,
            timeout_seconds=timeout,
        )
        raise AggregationTimeoutError(details={"timeout_seconds": timeout}) from e


@router.post(
    "/dashboard/runs",
    response_model=AggregationResult,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a background dashboard run",
    description="""
Start computing the dashboard in the background. Any run still in flight is
cancelled: only the most recent submission publishes a result.

Poll `GET /analytics/dashboard/runs/latest` for the outcome.
""",
)
async def submit_dashboard_run(
    request: DashboardRunRequest,
    aggregator: DashboardAggregator = Depends(get_aggregator),
    runner: DashboardRunner = Depends(get_runner),
) -> AggregationResult:
    """Submit a background aggregation.

    Args:
        request: Requested date range.
        aggregator: Dashboard aggregator.
        runner: Process-wide runner.

    Returns:
        Pending result for the submission.
    """
    # Validate synchronously so a bad range is a 400, not an error result
    period = aggregator.resolve_period(request.start_date, request.end_date)
    return runner.submit(
        aggregator,
        period,
        timeout_seconds=aggregator.settings.analytics_timeout_seconds,
    )


@router.get(
    "/dashboard/runs/latest",
    response_model=AggregationResult,
    summary="Get the latest dashboard run",
)
async def get_latest_dashboard_run(
    runner: DashboardRunner = Depends(get_runner),
) -> AggregationResult:
    """Outcome of the most recent submission (pending, ok or error).

    Raises:
        NotFoundError: If nothing was submitted yet.
    """
    result = runner.latest()
    if result is None:
        raise NotFoundError(message="No dashboard run has been submitted")
    return result


# =============================================================================
# Lookup Endpoints
# =============================================================================


@router.get(
    "/transformations/recent",
    response_model=list[TransformationDetail],
    summary="List the newest transformations",
)
async def list_recent_transformations(
    limit: int | None = Query(
        None,
        ge=1,
        le=100,
        description="Number of rows (defaults to the configured recent limit).",
    ),
    aggregator: DashboardAggregator = Depends(get_aggregator),
) -> list[TransformationDetail]:
    """Newest transformations with the owner's e-mail and final image."""
    return await aggregator.recent_transformations(limit=limit)


@router.get(
    "/users/transformations",
    response_model=UserTransformationsResponse,
    summary="Look up a user's transformations by e-mail",
)
async def get_user_transformations(
    email: str = Query(
        ...,
        min_length=3,
        max_length=255,
        description="Account e-mail (case-insensitive exact match).",
    ),
    aggregator: DashboardAggregator = Depends(get_aggregator),
) -> UserTransformationsResponse:
    """Every transformation of the account registered with ``email``.

    Args:
        email: Account e-mail.
        aggregator: Dashboard aggregator.

    Returns:
        The account's transformations, newest first.
    """
    return await aggregator.user_transformations(email)
