"""Tests for analytics schemas."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.features.analytics.schemas import (
    AccountRecord,
    AggregationResult,
    AggregationStatus,
    DailyPoint,
    DashboardRunRequest,
    Funnel,
    PaymentRecord,
    PeriodWindow,
    PopularityItem,
)


class TestRecords:
    """Tests for input records."""

    def test_records_are_immutable(self) -> None:
        """Records should reject attribute assignment."""
        account = AccountRecord(id="u1", created_at=datetime(2024, 1, 1, tzinfo=UTC))

        with pytest.raises(ValidationError):
            account.id = "u2"

    def test_payment_value_parsed_as_decimal(self) -> None:
        """String amounts should become Decimal."""
        payment = PaymentRecord(
            user_id="u1",
            value="29.90",
            created_at=None,
            status="CONFIRMED",
            plan_name="Basic",
        )

        assert payment.value == Decimal("29.90")
        assert payment.billing_type is None


class TestFunnel:
    """Tests for Funnel."""

    def test_conversion_rates(self) -> None:
        """Conversion rates are percentages of total signups."""
        funnel = Funnel(
            total_signups=4,
            email_confirmed=3,
            style_selected=2,
            tested=2,
            purchased_credits=1,
        )

        assert funnel.conversion_rates == {
            "total_signups": 100.0,
            "email_confirmed": 75.0,
            "style_selected": 50.0,
            "tested": 50.0,
            "purchased_credits": 25.0,
        }

    def test_conversion_rates_rounded(self) -> None:
        """Conversion rates are rounded to 2 decimal places."""
        funnel = Funnel(
            total_signups=3,
            email_confirmed=2,
            style_selected=1,
            tested=1,
            purchased_credits=0,
        )

        assert funnel.conversion_rates["email_confirmed"] == 66.67
        assert funnel.conversion_rates["style_selected"] == 33.33

    def test_conversion_rates_serialized(self) -> None:
        """Conversion rates are part of the JSON output."""
        funnel = Funnel(
            total_signups=0,
            email_confirmed=0,
            style_selected=0,
            tested=0,
            purchased_credits=0,
        )

        data = funnel.model_dump()

        assert data["conversion_rates"]["purchased_credits"] == 0.0

    def test_negative_counts_rejected(self) -> None:
        """Stage counts cannot be negative."""
        with pytest.raises(ValidationError):
            Funnel(
                total_signups=-1,
                email_confirmed=0,
                style_selected=0,
                tested=0,
                purchased_credits=0,
            )


class TestSnapshotComponents:
    """Tests for snapshot components."""

    def test_period_window_requires_a_day(self) -> None:
        """A window spans at least one day."""
        with pytest.raises(ValidationError):
            PeriodWindow(start_date=date(2024, 1, 1), end_date=date(2024, 1, 1), days=0)

    def test_reprocessing_rate_bounds(self) -> None:
        """Daily reprocessing rate must stay within [0, 100]."""
        with pytest.raises(ValidationError):
            DailyPoint(
                date=date(2024, 1, 1),
                transformations=1,
                new_signups=0,
                reprocessing_rate=101,
            )

    def test_popularity_count_positive(self) -> None:
        """Ranked items have been seen at least once."""
        with pytest.raises(ValidationError):
            PopularityItem(key="anime", count=0)


class TestRuns:
    """Tests for run request/result schemas."""

    def test_run_request_defaults(self) -> None:
        """Both dates are optional."""
        request = DashboardRunRequest()

        assert request.start_date is None
        assert request.end_date is None

    def test_run_request_parses_dates(self) -> None:
        """ISO dates are parsed."""
        request = DashboardRunRequest.model_validate({"start_date": "2024-01-01"})

        assert request.start_date == date(2024, 1, 1)

    def test_pending_result_has_no_outcome(self) -> None:
        """A pending result carries neither snapshot nor error."""
        result = AggregationResult(
            run_id="a" * 32,
            status=AggregationStatus.PENDING,
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 3),
            submitted_at=datetime(2024, 1, 3, tzinfo=UTC),
        )

        data = result.model_dump(mode="json")

        assert data["status"] == "pending"
        assert data["snapshot"] is None
        assert data["error_code"] is None
        assert data["dataset"] is None
