"""Analytics module for the admin dashboard.

This module computes the period-over-period dashboard snapshot (summary
cards, daily series, funnel, rankings) and the admin lookup tools.
"""

from app.features.analytics.datasource import DataSource, SQLAlchemyDataSource
from app.features.analytics.routes import router
from app.features.analytics.runner import DashboardRunner
from app.features.analytics.schemas import (
    AggregationResult,
    DashboardSnapshot,
    Dataset,
    VolumeSource,
)
from app.features.analytics.service import DashboardAggregator

__all__ = [
    "AggregationResult",
    "DashboardAggregator",
    "DashboardRunner",
    "DashboardSnapshot",
    "DataSource",
    "Dataset",
    "SQLAlchemyDataSource",
    "VolumeSource",
    "router",
]
