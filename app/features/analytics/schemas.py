"""Pydantic schemas for the analytics dashboard.

Two groups live here:
- Input records: immutable views of rows read from the product tables.
- Outputs: the dashboard snapshot and the API response envelopes.

All outputs are recomputed per request and never persisted.
"""

from datetime import date, datetime
from datetime import date as date_type
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

# =============================================================================
# Enums
# =============================================================================


class Dataset(str, Enum):
    """External datasets read by the aggregation pipeline."""

    ACCOUNTS = "accounts"
    TRANSFORMATIONS = "transformations"
    PAYMENTS = "payments"
    STYLE_SELECTIONS = "style_selections"
    CREDIT_USAGE = "credit_usage"


class VolumeSource(str, Enum):
    """Which dataset represents transformation volume.

    - TRANSFORMATIONS: count of transformation jobs
    - CREDIT_USAGE: sum of credits debited
    """

    TRANSFORMATIONS = "transformations"
    CREDIT_USAGE = "credit_usage"


class AggregationStatus(str, Enum):
    """Lifecycle of a submitted dashboard aggregation.

    State transitions:
    - PENDING -> OK | ERROR
    - PENDING -> (discarded when a newer submission replaces it)
    """

    PENDING = "pending"
    OK = "ok"
    ERROR = "error"


# =============================================================================
# Input Records
# =============================================================================


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class AccountRecord(_Record):
    """Account created on signup."""

    id: str
    created_at: datetime
    email: str | None = None
    email_confirmed_at: datetime | None = None


class TransformationRecord(_Record):
    """One photo-transformation job."""

    id: str
    user_id: str
    created_at: datetime
    reprocessing_count: int = 0
    status: str = "completed"


class PaymentRecord(_Record):
    """One checkout charge."""

    user_id: str
    value: Decimal
    created_at: datetime | None
    status: str
    plan_name: str
    billing_type: str | None = None


class StyleSelectionRecord(_Record):
    """Style picked by an account; one row per account."""

    user_id: str
    selected_style: str


class CreditUsageRecord(_Record):
    """Credits debited for a transformation."""

    amount_used: int
    used_at: datetime
    user_id: str | None = None


# =============================================================================
# Snapshot Components
# =============================================================================


class PeriodWindow(BaseModel):
    """Inclusive calendar-day window."""

    start_date: date = Field(..., description="First day of the period (inclusive).")
    end_date: date = Field(..., description="Last day of the period (inclusive).")
    days: int = Field(..., ge=1, description="Number of calendar days in the period.")


class PeriodSummary(BaseModel):
    """Scalar metrics for one period."""

    signups: int = Field(..., ge=0, description="Accounts created in the period.")
    transformations: int = Field(
        ...,
        ge=0,
        description="Transformation volume: job count, or credits used when the "
        "pipeline is configured with volume_source='credit_usage'.",
    )
    reprocessed_transformations: int = Field(
        ..., ge=0, description="Jobs with reprocessing_count > 0."
    )
    reprocessing_rate: float = Field(
        ...,
        ge=0,
        le=100,
        description="Reprocessed jobs / total jobs * 100. 0 when there are no jobs.",
    )
    plans_contracted: int = Field(
        ..., ge=0, description="Qualifying (confirmed, configured billing type) payments."
    )
    revenue: Decimal = Field(..., ge=0, description="Sum of qualifying payment values.")


class SummaryDeltas(BaseModel):
    """Percentage change current vs previous. Null when previous is 0."""

    signups: float | None = None
    transformations: float | None = None
    reprocessing_rate: float | None = None
    plans_contracted: float | None = None
    revenue: float | None = None


class PeriodComparison(BaseModel):
    """Current period, comparison period and their deltas."""

    current: PeriodSummary
    previous: PeriodSummary
    deltas: SummaryDeltas


class DailyPoint(BaseModel):
    """Usage metrics for one calendar day."""

    date: date_type
    transformations: int = Field(..., ge=0)
    new_signups: int = Field(..., ge=0)
    reprocessing_rate: float = Field(..., ge=0, le=100)


class RevenuePoint(BaseModel):
    """Contracted plans and revenue for one calendar day."""

    date: date_type
    plans: int = Field(..., ge=0)
    revenue: Decimal = Field(..., ge=0)


class Funnel(BaseModel):
    """Signup conversion stages for accounts created in the period.

    Each stage is an independent membership count over the period's signups,
    not a running total, so later stages are not guaranteed to be smaller.
    """

    total_signups: int = Field(..., ge=0)
    email_confirmed: int = Field(..., ge=0)
    style_selected: int = Field(..., ge=0)
    tested: int = Field(..., ge=0)
    purchased_credits: int = Field(..., ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def conversion_rates(self) -> dict[str, float]:
        """Share of total signups reaching each stage, in percent (2 places)."""
        stages = {
            "total_signups": self.total_signups,
            "email_confirmed": self.email_confirmed,
            "style_selected": self.style_selected,
            "tested": self.tested,
            "purchased_credits": self.purchased_credits,
        }
        if self.total_signups == 0:
            return {name: 0.0 for name in stages}
        return {
            name: round(count / self.total_signups * 100, 2) for name, count in stages.items()
        }


class PopularityItem(BaseModel):
    """Ranked key with its occurrence count."""

    key: str
    count: int = Field(..., ge=1)


class PaymentStats(BaseModel):
    """Payment pipeline health for the current period."""

    pending: int = Field(..., ge=0, description="Charges still awaiting payment.")
    confirmed: int = Field(..., ge=0, description="Qualifying confirmed charges.")
    total_value: Decimal = Field(..., ge=0, description="Sum of qualifying charges.")
    confirmation_rate: float = Field(
        ...,
        ge=0,
        le=100,
        description="confirmed / (pending + confirmed) * 100, 0 when both are 0.",
    )
    average_ticket: Decimal = Field(
        ..., ge=0, description="total_value / confirmed, 0 when nothing confirmed."
    )


class DashboardSnapshot(BaseModel):
    """Everything the dashboard renders for one date range."""

    model_config = ConfigDict(frozen=True)

    period: PeriodWindow
    comparison_period: PeriodWindow | None = Field(
        None,
        description="Preceding window of equal length. Null if it falls before the "
        "start of the calendar.",
    )
    volume_source: VolumeSource
    summary: PeriodComparison
    daily: list[DailyPoint] = Field(..., description="One entry per day, zero-filled.")
    revenue: list[RevenuePoint] = Field(..., description="One entry per day, zero-filled.")
    funnel: Funnel
    popular_styles: list[PopularityItem]
    popular_plans: list[PopularityItem]
    payment_stats: PaymentStats
    generated_at: datetime


# =============================================================================
# Background Aggregation
# =============================================================================


class DashboardRunRequest(BaseModel):
    """Request body for submitting a background aggregation.

    Omit both dates to use the default trailing window.
    """

    start_date: date | None = Field(None, description="First day (inclusive).")
    end_date: date | None = Field(None, description="Last day (inclusive).")


class AggregationResult(BaseModel):
    """Outcome of the latest submitted aggregation.

    Exactly one of ``snapshot`` (status ok) or ``error_code`` (status error)
    is set once the run finishes; both are null while pending.
    """

    run_id: str = Field(..., description="Identifier of the submission (32-char hex).")
    status: AggregationStatus
    start_date: date
    end_date: date
    snapshot: DashboardSnapshot | None = None
    error_code: str | None = None
    error_message: str | None = None
    dataset: Dataset | None = Field(
        None, description="Dataset whose read failed, for DATA_FETCH_FAILED errors."
    )
    submitted_at: datetime
    completed_at: datetime | None = None


# =============================================================================
# Lookup Tools
# =============================================================================


class TransformationDetail(BaseModel):
    """Transformation row enriched for the admin tables."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    user_email: str | None = Field(
        None, description="Owner e-mail from the account table. Null if unknown."
    )
    original_image_name: str
    original_image_url: str
    final_image_url: str | None = Field(
        None, description="Last transformed image, or null if none were produced."
    )
    transformed_count: int = Field(..., ge=0)
    reprocessing_count: int = Field(..., ge=0)
    status: str
    created_at: datetime


class UserTransformationsResponse(BaseModel):
    """All transformations of one account, newest first."""

    user_id: str
    email: str
    transformations: list[TransformationDetail]
    total: int = Field(..., ge=0)
