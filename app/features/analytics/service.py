"""Dashboard aggregation service.

Builds a ``DashboardSnapshot`` for a date range from the external datasets:

1. Resolve the requested range and its comparison range.
2. Fan out every independent read (both periods plus the style scan) and
   join them. A single failed read fails the whole aggregation and cancels
   the reads still in flight.
3. Funnel stage 2: once the current period's account ids are known, read
   their style selections, transformations and payments concurrently.
4. Reduce everything with the pure functions in ``metrics``.

Snapshots are recomputed on every call; nothing is cached.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Sequence
from datetime import UTC, date, datetime
from typing import Any

from app.core.config import Settings, get_settings
from app.core.exceptions import AnalyticsError, DataFetchFailedError, NotFoundError
from app.core.logging import get_logger
from app.features.analytics import metrics
from app.features.analytics.datasource import DataSource
from app.features.analytics.periods import DateRange, resolve_range
from app.features.analytics.schemas import (
    DashboardSnapshot,
    Dataset,
    PeriodWindow,
    TransformationDetail,
    UserTransformationsResponse,
    VolumeSource,
)

logger = get_logger(__name__)


class DashboardAggregator:
    """Computes dashboard snapshots and serves the admin lookup tools.

    Attributes:
        source: Read access to the external datasets.
        settings: Application settings.
        contract: Filter selecting contracted payments.
        volume_source: Dataset that defines transformation volume.
    """

    def __init__(self, source: DataSource, settings: Settings | None = None) -> None:
        """Initialize the aggregator.

        Args:
            source: Read access to the external datasets.
            settings: Settings override (defaults to the cached settings).
        """
        self.source = source
        self.settings = settings or get_settings()
        self.contract = metrics.ContractFilter(
            confirmed_statuses=frozenset(self.settings.analytics_confirmed_statuses),
            billing_type=self.settings.analytics_contract_billing_type,
            pending_statuses=frozenset(self.settings.analytics_pending_statuses),
        )
        self.volume_source = VolumeSource(self.settings.analytics_volume_source)

    def today(self) -> date:
        """Current calendar day in the analytics timezone."""
        return datetime.now(self.settings.tzinfo).date()

    def resolve_period(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        today: date | None = None,
    ) -> DateRange:
        """Apply defaults and limits to a requested range.

        Raises:
            InvalidRangeError: If end precedes start or the range is too long.
        """
        return resolve_range(
            start_date,
            end_date,
            today=today or self.today(),
            default_days=self.settings.analytics_default_range_days,
            max_days=self.settings.analytics_max_date_range_days,
        )

    async def compute_snapshot(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        today: date | None = None,
    ) -> DashboardSnapshot:
        """Compute the dashboard for a date range.

        Args:
            start_date: First day (inclusive); defaults per ``resolve_period``.
            end_date: Last day (inclusive); defaults per ``resolve_period``.
            today: Override for the current day (used to default the range).

        Returns:
            Immutable dashboard snapshot.

        Raises:
            InvalidRangeError: If the range is unusable.
            DataFetchFailedError: If any read fails.
        """
        started = time.perf_counter()
        period = self.resolve_period(start_date, end_date, today)
        comparison = period.comparison()
        tz = self.settings.tzinfo

        rows = await self._gather(self._period_reads(period, comparison))

        accounts = rows[("current", Dataset.ACCOUNTS)]
        transformations = rows[("current", Dataset.TRANSFORMATIONS)]
        payments = rows[("current", Dataset.PAYMENTS)]
        credit_usage = rows.get(("current", Dataset.CREDIT_USAGE), ())

        members = await self._gather(self._membership_reads(accounts))

        current = metrics.summarize_period(
            accounts=accounts,
            transformations=transformations,
            payments=payments,
            credit_usage=credit_usage,
            volume_source=self.volume_source,
            contract=self.contract,
        )
        if comparison is None:
            previous = metrics.empty_summary()
        else:
            previous = metrics.summarize_period(
                accounts=rows[("previous", Dataset.ACCOUNTS)],
                transformations=rows[("previous", Dataset.TRANSFORMATIONS)],
                payments=rows[("previous", Dataset.PAYMENTS)],
                credit_usage=rows.get(("previous", Dataset.CREDIT_USAGE), ()),
                volume_source=self.volume_source,
                contract=self.contract,
            )

        latest_styles = metrics.latest_style_per_account(rows[("all", Dataset.STYLE_SELECTIONS)])

        snapshot = DashboardSnapshot(
            period=_window(period),
            comparison_period=_window(comparison) if comparison else None,
            volume_source=self.volume_source,
            summary=metrics.compare_periods(current, previous),
            daily=metrics.daily_series(
                period,
                tz,
                accounts=accounts,
                transformations=transformations,
                credit_usage=credit_usage,
                volume_source=self.volume_source,
            ),
            revenue=metrics.revenue_series(period, tz, payments, self.contract),
            funnel=metrics.build_funnel(
                accounts=accounts,
                style_selections=members.get(("funnel", Dataset.STYLE_SELECTIONS), ()),
                transformations=members.get(("funnel", Dataset.TRANSFORMATIONS), ()),
                payments=members.get(("funnel", Dataset.PAYMENTS), ()),
                contract=self.contract,
            ),
            popular_styles=metrics.rank_popularity(
                (s.selected_style for s in latest_styles),
                self.settings.analytics_popular_styles_limit,
            ),
            popular_plans=metrics.rank_popularity(
                (p.plan_name for p in payments if self.contract.is_contracted(p)),
                self.settings.analytics_popular_plans_limit,
            ),
            payment_stats=metrics.payment_stats(payments, self.contract),
            generated_at=datetime.now(UTC),
        )

        logger.info(
            "analytics.snapshot_computed",
            start_date=str(period.start),
            end_date=str(period.end),
            days=period.days,
            signups=current.signups,
            transformations=current.transformations,
            plans_contracted=current.plans_contracted,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return snapshot

    async def recent_transformations(self, limit: int | None = None) -> list[TransformationDetail]:
        """Newest transformations across all accounts.

        Args:
            limit: Maximum rows (defaults to ``analytics_recent_limit``).

        Returns:
            Transformation details, newest first.
        """
        if limit is None:
            limit = self.settings.analytics_recent_limit
        details = await _guarded(
            Dataset.TRANSFORMATIONS,
            self.source.fetch_transformation_details(limit=limit),
        )
        return list(details)

    async def user_transformations(self, email: str) -> UserTransformationsResponse:
        """Every transformation owned by the account with ``email``.

        Args:
            email: Account e-mail; matched case-insensitively.

        Returns:
            The account's transformations, newest first.

        Raises:
            NotFoundError: If no account has this e-mail.
            DataFetchFailedError: If a read fails.
        """
        account = await _guarded(Dataset.ACCOUNTS, self.source.find_account_by_email(email))
        if account is None:
            raise NotFoundError(
                message=f"No account registered with e-mail '{email}'",
                details={"email": email},
            )

        details = await _guarded(
            Dataset.TRANSFORMATIONS,
            self.source.fetch_transformation_details(user_id=account.id),
        )

        logger.info(
            "analytics.user_lookup_completed",
            user_id=account.id,
            transformations=len(details),
        )
        return UserTransformationsResponse(
            user_id=account.id,
            email=account.email or email,
            transformations=list(details),
            total=len(details),
        )

    def _period_reads(
        self,
        period: DateRange,
        comparison: DateRange | None,
    ) -> dict[tuple[str, Dataset], Awaitable[Sequence[Any]]]:
        datasets = [Dataset.ACCOUNTS, Dataset.TRANSFORMATIONS, Dataset.PAYMENTS]
        if self.volume_source == VolumeSource.CREDIT_USAGE:
            datasets.append(Dataset.CREDIT_USAGE)

        reads: dict[tuple[str, Dataset], Awaitable[Sequence[Any]]] = {}
        for dataset in datasets:
            reads[("current", dataset)] = self.source.fetch_range(
                dataset, period.start, period.end
            )
            if comparison is not None:
                reads[("previous", dataset)] = self.source.fetch_range(
                    dataset, comparison.start, comparison.end
                )
        # Style popularity is all-time
        reads[("all", Dataset.STYLE_SELECTIONS)] = self.source.fetch_range(
            Dataset.STYLE_SELECTIONS
        )
        return reads

    def _membership_reads(
        self,
        accounts: Sequence[Any],
    ) -> dict[tuple[str, Dataset], Awaitable[Sequence[Any]]]:
        user_ids = [account.id for account in accounts]
        if not user_ids:
            return {}
        return {
            ("funnel", dataset): self.source.fetch_for_users(dataset, user_ids)
            for dataset in (Dataset.STYLE_SELECTIONS, Dataset.TRANSFORMATIONS, Dataset.PAYMENTS)
        }

    async def _gather(
        self,
        reads: dict[tuple[str, Dataset], Awaitable[Sequence[Any]]],
    ) -> dict[tuple[str, Dataset], Sequence[Any]]:
        """Run reads concurrently; on the first failure cancel the rest."""
        tasks = {
            key: asyncio.ensure_future(_guarded(key[1], read)) for key, read in reads.items()
        }
        try:
            results = await asyncio.gather(*tasks.values())
        except BaseException:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise
        return dict(zip(tasks.keys(), results, strict=True))


async def _guarded[T](dataset: Dataset, read: Awaitable[T]) -> T:
    """Await a read, reporting any failure as ``DataFetchFailedError``."""
    try:
        return await read
    except AnalyticsError:
        raise
    except Exception as e:
        logger.error(
            "analytics.read_failed",
            dataset=dataset.value,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DataFetchFailedError(
            dataset=dataset.value,
            details={"error_type": type(e).__name__},
        ) from e


def _window(period: DateRange) -> PeriodWindow:
    return PeriodWindow(start_date=period.start, end_date=period.end, days=period.days)
