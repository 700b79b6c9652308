"""Pure reductions from dataset rows to dashboard metrics.

Nothing here performs I/O; every function takes already-fetched records and
returns plain values or schema objects, so the aggregator can be tested
against in-memory rows.

Day bucketing is a single pass per dataset keyed by calendar day, followed by
a zero-fill over the requested range so every day has exactly one entry.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, tzinfo
from decimal import Decimal

from app.features.analytics.periods import DateRange, local_day
from app.features.analytics.schemas import (
    AccountRecord,
    CreditUsageRecord,
    DailyPoint,
    Funnel,
    PaymentRecord,
    PaymentStats,
    PeriodComparison,
    PeriodSummary,
    PopularityItem,
    RevenuePoint,
    StyleSelectionRecord,
    SummaryDeltas,
    TransformationRecord,
    VolumeSource,
)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ContractFilter:
    """Defines which payments count as a contracted plan.

    Attributes:
        confirmed_statuses: Gateway statuses meaning the charge was paid.
        billing_type: Required payment method, or None to accept any.
        pending_statuses: Gateway statuses meaning the charge is still open.
    """

    confirmed_statuses: frozenset[str] = field(default_factory=lambda: frozenset({"CONFIRMED"}))
    billing_type: str | None = None
    pending_statuses: frozenset[str] = field(default_factory=lambda: frozenset({"PENDING"}))

    def is_contracted(self, payment: PaymentRecord) -> bool:
        """Check whether a payment is a confirmed charge of the configured type."""
        if payment.status not in self.confirmed_statuses:
            return False
        return self.billing_type is None or payment.billing_type == self.billing_type

    def is_pending(self, payment: PaymentRecord) -> bool:
        """Check whether a payment is still awaiting confirmation."""
        return payment.status in self.pending_statuses


# =============================================================================
# Scalar helpers
# =============================================================================


def percentage(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100 rounded to 2 places, 0 for a 0 denominator."""
    if denominator == 0:
        return 0.0
    return round(numerator * 100 / denominator, 2)


def percent_change(current: float | Decimal, previous: float | Decimal) -> float | None:
    """Relative change in percent; None when there is no baseline."""
    if previous == 0:
        return None
    return round(float((current - previous) * 100 / previous), 2)


def count_reprocessed(transformations: Iterable[TransformationRecord]) -> int:
    """Jobs that were re-run at least once."""
    return sum(1 for t in transformations if t.reprocessing_count > 0)


def reprocessing_rate(transformations: Sequence[TransformationRecord]) -> float:
    """Share of jobs reprocessed at least once, in [0, 100]."""
    return percentage(count_reprocessed(transformations), len(transformations))


def transformation_volume(
    volume_source: VolumeSource,
    transformations: Sequence[TransformationRecord],
    credit_usage: Sequence[CreditUsageRecord],
) -> int:
    """Volume according to the configured source."""
    if volume_source == VolumeSource.CREDIT_USAGE:
        return sum(usage.amount_used for usage in credit_usage)
    return len(transformations)


# =============================================================================
# Period summaries
# =============================================================================


def summarize_period(
    *,
    accounts: Sequence[AccountRecord],
    transformations: Sequence[TransformationRecord],
    payments: Sequence[PaymentRecord],
    credit_usage: Sequence[CreditUsageRecord],
    volume_source: VolumeSource,
    contract: ContractFilter,
) -> PeriodSummary:
    """Reduce one period's rows to scalar metrics.

    Args:
        accounts: Accounts created in the period.
        transformations: Jobs created in the period.
        payments: Payments created in the period.
        credit_usage: Credit debits in the period.
        volume_source: Dataset that defines transformation volume.
        contract: Filter selecting contracted payments.

    Returns:
        Period summary.
    """
    contracted = [p for p in payments if contract.is_contracted(p)]
    return PeriodSummary(
        signups=len(accounts),
        transformations=transformation_volume(volume_source, transformations, credit_usage),
        reprocessed_transformations=count_reprocessed(transformations),
        reprocessing_rate=reprocessing_rate(transformations),
        plans_contracted=len(contracted),
        revenue=sum((p.value for p in contracted), Decimal("0")),
    )


def empty_summary() -> PeriodSummary:
    """Summary of a period with no rows."""
    return PeriodSummary(
        signups=0,
        transformations=0,
        reprocessed_transformations=0,
        reprocessing_rate=0.0,
        plans_contracted=0,
        revenue=Decimal("0"),
    )


def compare_periods(current: PeriodSummary, previous: PeriodSummary) -> PeriodComparison:
    """Attach percentage deltas to a pair of period summaries."""
    deltas = SummaryDeltas(
        signups=percent_change(current.signups, previous.signups),
        transformations=percent_change(current.transformations, previous.transformations),
        reprocessing_rate=percent_change(current.reprocessing_rate, previous.reprocessing_rate),
        plans_contracted=percent_change(current.plans_contracted, previous.plans_contracted),
        revenue=percent_change(current.revenue, previous.revenue),
    )
    return PeriodComparison(current=current, previous=previous, deltas=deltas)


# =============================================================================
# Day-indexed series
# =============================================================================


def daily_series(
    period: DateRange,
    tz: tzinfo,
    *,
    accounts: Iterable[AccountRecord],
    transformations: Iterable[TransformationRecord],
    credit_usage: Iterable[CreditUsageRecord],
    volume_source: VolumeSource,
) -> list[DailyPoint]:
    """Per-day usage, one entry for every day of the period.

    Rows dated outside the period are ignored.

    Args:
        period: Inclusive day range.
        tz: Timezone used to assign timestamps to days.
        accounts: Accounts created in the period.
        transformations: Jobs created in the period.
        credit_usage: Credit debits in the period.
        volume_source: Dataset that defines transformation volume.

    Returns:
        Daily points ordered by date.
    """
    signups: Counter[date] = Counter()
    jobs: Counter[date] = Counter()
    reprocessed: Counter[date] = Counter()
    credits: Counter[date] = Counter()

    for account in accounts:
        signups[local_day(account.created_at, tz)] += 1
    for job in transformations:
        day = local_day(job.created_at, tz)
        jobs[day] += 1
        if job.reprocessing_count > 0:
            reprocessed[day] += 1
    for usage in credit_usage:
        credits[local_day(usage.used_at, tz)] += usage.amount_used

    volume = credits if volume_source == VolumeSource.CREDIT_USAGE else jobs

    return [
        DailyPoint(
            date=day,
            transformations=volume[day],
            new_signups=signups[day],
            reprocessing_rate=percentage(reprocessed[day], jobs[day]),
        )
        for day in period.iter_days()
    ]


def revenue_series(
    period: DateRange,
    tz: tzinfo,
    payments: Iterable[PaymentRecord],
    contract: ContractFilter,
) -> list[RevenuePoint]:
    """Per-day contracted plans and revenue, zero-filled over the period."""
    plans: Counter[date] = Counter()
    revenue: defaultdict[date, Decimal] = defaultdict(lambda: Decimal("0"))

    for payment in payments:
        if payment.created_at is None or not contract.is_contracted(payment):
            continue
        day = local_day(payment.created_at, tz)
        plans[day] += 1
        revenue[day] += payment.value

    return [
        RevenuePoint(date=day, plans=plans[day], revenue=revenue[day])
        for day in period.iter_days()
    ]


# =============================================================================
# Rankings
# =============================================================================


def rank_popularity(keys: Iterable[str], limit: int) -> list[PopularityItem]:
    """Top keys by occurrence count.

    Sorted descending by count; ties keep the order in which keys were first
    seen.

    Args:
        keys: Key per occurrence (style name, plan name).
        limit: Maximum number of entries.

    Returns:
        At most ``limit`` ranked items.
    """
    counts = Counter(keys)
    # Counter preserves first-seen order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [PopularityItem(key=key, count=count) for key, count in ranked[:limit]]


def latest_style_per_account(
    selections: Iterable[StyleSelectionRecord],
) -> list[StyleSelectionRecord]:
    """Keep the last selection seen for each account."""
    latest: dict[str, StyleSelectionRecord] = {}
    for selection in selections:
        latest[selection.user_id] = selection
    return list(latest.values())


# =============================================================================
# Funnel and payments
# =============================================================================


def build_funnel(
    *,
    accounts: Sequence[AccountRecord],
    style_selections: Iterable[StyleSelectionRecord],
    transformations: Iterable[TransformationRecord],
    payments: Iterable[PaymentRecord],
    contract: ContractFilter,
) -> Funnel:
    """Count how many of the period's signups reached each stage.

    Each stage is the size of the intersection between the signup ids and the
    ids present in the stage's dataset.

    Args:
        accounts: Accounts created in the period.
        style_selections: Selections made by those accounts.
        transformations: Jobs ever created by those accounts.
        payments: Payments ever made by those accounts.
        contract: Filter selecting contracted payments.

    Returns:
        Funnel stage counts.
    """
    signup_ids = {account.id for account in accounts}
    confirmed_ids = {a.id for a in accounts if a.email_confirmed_at is not None}
    styled_ids = {s.user_id for s in style_selections}
    tested_ids = {t.user_id for t in transformations}
    purchased_ids = {p.user_id for p in payments if contract.is_contracted(p)}

    return Funnel(
        total_signups=len(signup_ids),
        email_confirmed=len(signup_ids & confirmed_ids),
        style_selected=len(signup_ids & styled_ids),
        tested=len(signup_ids & tested_ids),
        purchased_credits=len(signup_ids & purchased_ids),
    )


def payment_stats(payments: Iterable[PaymentRecord], contract: ContractFilter) -> PaymentStats:
    """Pending vs confirmed charges and the average ticket."""
    pending = 0
    confirmed = 0
    total = Decimal("0")
    for payment in payments:
        if contract.is_contracted(payment):
            confirmed += 1
            total += payment.value
        elif contract.is_pending(payment):
            pending += 1

    average = (total / confirmed).quantize(CENTS) if confirmed else Decimal("0")
    return PaymentStats(
        pending=pending,
        confirmed=confirmed,
        total_value=total,
        confirmation_rate=percentage(confirmed, pending + confirmed),
        average_ticket=average,
    )
