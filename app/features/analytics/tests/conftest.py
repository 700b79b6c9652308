"""Test fixtures for analytics module."""

from datetime import date

import pytest

from app.core.config import Settings
from app.features.analytics.schemas import Dataset
from app.features.analytics.service import DashboardAggregator
from app.features.analytics.tests.factories import (
    FakeDataSource,
    make_account,
    make_payment,
    make_style,
    make_transformation,
)


@pytest.fixture
def analytics_settings() -> Settings:
    """Settings with the default pipeline configuration pinned."""
    return Settings(
        app_env="testing",
        analytics_timezone="UTC",
        analytics_default_range_days=7,
        analytics_max_date_range_days=730,
        analytics_volume_source="transformations",
        analytics_confirmed_statuses=["CONFIRMED"],
        analytics_pending_statuses=["PENDING"],
        analytics_contract_billing_type="CREDIT_CARD",
        analytics_popular_styles_limit=5,
        analytics_popular_plans_limit=3,
        analytics_recent_limit=10,
        analytics_timeout_seconds=5.0,
    )


@pytest.fixture
def fake_source() -> FakeDataSource:
    """Empty in-memory data source."""
    return FakeDataSource()


@pytest.fixture
def aggregator(fake_source: FakeDataSource, analytics_settings: Settings) -> DashboardAggregator:
    """Aggregator reading from the in-memory data source."""
    return DashboardAggregator(fake_source, analytics_settings)


@pytest.fixture
def populated_source(fake_source: FakeDataSource) -> FakeDataSource:
    """Data for the period 2024-01-01..2024-01-03 and its comparison period.

    Current period:
    - 3 signups (u1 confirmed, u2 confirmed, u3)
    - 4 transformations, 1 reprocessed
    - 2 contracted card payments (Basic, Pro), 1 PIX payment, 1 pending
    Comparison period (2023-12-29..2023-12-31):
    - 1 signup (u0), 2 transformations, 1 contracted payment
    """
    d1, d2, d3 = date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)
    prev = date(2023, 12, 30)

    fake_source.add(
        Dataset.ACCOUNTS,
        make_account("u0", prev, confirmed=True),
        make_account("u1", d1, confirmed=True),
        make_account("u2", d1, confirmed=True),
        make_account("u3", d3),
    )
    fake_source.add(
        Dataset.TRANSFORMATIONS,
        make_transformation("u0", prev),
        make_transformation("u0", prev, reprocessing_count=1),
        make_transformation("u1", d1),
        make_transformation("u1", d1, reprocessing_count=2),
        make_transformation("u2", d2),
        make_transformation("u0", d3),
        # Outside both periods; still counts for u3's funnel membership
        make_transformation("u3", date(2024, 2, 1)),
    )
    fake_source.add(
        Dataset.PAYMENTS,
        make_payment("u0", prev, value="19.90"),
        make_payment("u1", d1, value="29.90", plan_name="Basic"),
        make_payment("u2", d2, value="49.90", plan_name="Pro"),
        make_payment("u3", d3, value="29.90", billing_type="PIX"),
        make_payment("u3", d3, value="29.90", status="PENDING"),
    )
    fake_source.add(
        Dataset.STYLE_SELECTIONS,
        make_style("u0", "anime"),
        make_style("u1", "watercolor"),
        make_style("u2", "anime"),
        make_style("u1", "anime"),
    )
    return fake_source
