"""Data-access boundary between the aggregator and the product database.

The aggregator only talks to the ``DataSource`` protocol. The SQLAlchemy
implementation opens a fresh session per read so that independent reads can
run concurrently; an ``AsyncSession`` cannot execute two statements at once.

Every read failure is converted into ``DataFetchFailedError`` naming the
dataset that failed.
"""

from __future__ import annotations

import json
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from datetime import date, tzinfo
from typing import Any, Protocol

from pydantic import BaseModel
from sqlalchemy import ColumnElement, Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import DataFetchFailedError
from app.core.logging import get_logger
from app.features.analytics.models import (
    AuthUser,
    CreditUsage,
    Payment,
    PhotoTransformation,
    UserStyle,
)
from app.features.analytics.periods import day_end, day_start
from app.features.analytics.schemas import (
    AccountRecord,
    CreditUsageRecord,
    Dataset,
    PaymentRecord,
    StyleSelectionRecord,
    TransformationDetail,
    TransformationRecord,
)

logger = get_logger(__name__)

# Upper bound on ids per IN (...) clause for membership reads
USER_ID_CHUNK_SIZE = 1000


class DataSource(Protocol):
    """Read access to the external datasets."""

    async def fetch_range(
        self,
        dataset: Dataset,
        start: date | None = None,
        end: date | None = None,
    ) -> Sequence[Any]:
        """Rows of ``dataset`` whose timestamp falls in [start, end] (inclusive days).

        A None bound leaves that side of the range open.
        """
        ...

    async def fetch_for_users(
        self,
        dataset: Dataset,
        user_ids: Collection[str],
    ) -> Sequence[Any]:
        """All rows of ``dataset`` owned by any of ``user_ids``, regardless of date."""
        ...

    async def fetch_transformation_details(
        self,
        limit: int | None = None,
        user_id: str | None = None,
    ) -> Sequence[TransformationDetail]:
        """Newest transformations, optionally restricted to one account.

        A None limit returns every matching row.
        """
        ...

    async def find_account_by_email(self, email: str) -> AccountRecord | None:
        """Account with the given e-mail (case-insensitive), if any."""
        ...


@dataclass(frozen=True)
class _TableMapping:
    """How one dataset maps onto its table."""

    columns: tuple[Any, ...]
    timestamp: Any
    user_column: Any
    order_by: Any
    record: type[BaseModel]


_TABLES: dict[Dataset, _TableMapping] = {
    Dataset.ACCOUNTS: _TableMapping(
        columns=(AuthUser.id, AuthUser.created_at, AuthUser.email, AuthUser.email_confirmed_at),
        timestamp=AuthUser.created_at,
        user_column=AuthUser.id,
        order_by=AuthUser.created_at,
        record=AccountRecord,
    ),
    Dataset.TRANSFORMATIONS: _TableMapping(
        columns=(
            PhotoTransformation.id,
            PhotoTransformation.user_id,
            PhotoTransformation.created_at,
            PhotoTransformation.reprocessing_count,
            PhotoTransformation.status,
        ),
        timestamp=PhotoTransformation.created_at,
        user_column=PhotoTransformation.user_id,
        order_by=PhotoTransformation.created_at,
        record=TransformationRecord,
    ),
    Dataset.PAYMENTS: _TableMapping(
        columns=(
            Payment.user_id,
            Payment.value,
            Payment.created_at,
            Payment.status,
            Payment.plan_name,
            Payment.billing_type,
        ),
        timestamp=Payment.created_at,
        user_column=Payment.user_id,
        order_by=Payment.created_at,
        record=PaymentRecord,
    ),
    Dataset.STYLE_SELECTIONS: _TableMapping(
        columns=(UserStyle.user_id, UserStyle.selected_style),
        timestamp=UserStyle.created_at,
        user_column=UserStyle.user_id,
        # Ascending so the latest selection per account is seen last
        order_by=UserStyle.updated_at,
        record=StyleSelectionRecord,
    ),
    Dataset.CREDIT_USAGE: _TableMapping(
        columns=(CreditUsage.amount_used, CreditUsage.used_at, CreditUsage.user_id),
        timestamp=CreditUsage.used_at,
        user_column=CreditUsage.user_id,
        order_by=CreditUsage.used_at,
        record=CreditUsageRecord,
    ),
}


def final_image_url(transformed_images: Any) -> str | None:
    """Last image produced by a transformation.

    ``transformed_images`` is a JSON array, oldest first. Elements are either
    URLs or objects carrying a ``url`` key. Older rows store the array as a
    JSON-encoded string.
    """
    images = transformed_images
    if isinstance(images, str):
        try:
            images = json.loads(images)
        except json.JSONDecodeError:
            return None
    if not isinstance(images, list) or not images:
        return None
    last = images[-1]
    if isinstance(last, dict):
        url = last.get("url")
        return str(url) if url else None
    return str(last) if last else None


def _image_count(transformed_images: Any) -> int:
    images = transformed_images
    if isinstance(images, str):
        try:
            images = json.loads(images)
        except json.JSONDecodeError:
            return 0
    return len(images) if isinstance(images, list) else 0


class SQLAlchemyDataSource:
    """DataSource backed by the product's Postgres via async SQLAlchemy.

    Attributes:
        session_maker: Factory for per-read sessions.
        tz: Timezone defining where calendar days start.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], tz: tzinfo) -> None:
        """Initialize the data source.

        Args:
            session_maker: Factory for per-read sessions.
            tz: Timezone defining where calendar days start.
        """
        self.session_maker = session_maker
        self.tz = tz

    async def fetch_range(
        self,
        dataset: Dataset,
        start: date | None = None,
        end: date | None = None,
    ) -> Sequence[Any]:
        """Rows of ``dataset`` timestamped within [start, end] (inclusive days).

        Args:
            dataset: Dataset to read.
            start: First day (inclusive), or None for no lower bound.
            end: Last day (inclusive), or None for no upper bound.

        Returns:
            Immutable records ordered by timestamp.

        Raises:
            DataFetchFailedError: If the read fails.
        """
        table = _TABLES[dataset]
        stmt = select(*table.columns)
        if start is not None:
            stmt = stmt.where(table.timestamp >= day_start(start, self.tz))
        if end is not None:
            stmt = stmt.where(table.timestamp < day_end(end, self.tz))
        stmt = stmt.order_by(table.order_by)

        records = await self._read(dataset, stmt, table.record)
        logger.debug(
            "analytics.range_read",
            dataset=dataset.value,
            start=str(start) if start else None,
            end=str(end) if end else None,
            rows=len(records),
        )
        return records

    async def fetch_for_users(
        self,
        dataset: Dataset,
        user_ids: Collection[str],
    ) -> Sequence[Any]:
        """All rows of ``dataset`` owned by ``user_ids``.

        Args:
            dataset: Dataset to read.
            user_ids: Account ids to match.

        Returns:
            Immutable records; empty when no ids are given.

        Raises:
            DataFetchFailedError: If the read fails.
        """
        ids = sorted(set(user_ids))
        if not ids:
            return ()

        table = _TABLES[dataset]
        records: list[Any] = []
        for offset in range(0, len(ids), USER_ID_CHUNK_SIZE):
            chunk = ids[offset : offset + USER_ID_CHUNK_SIZE]
            stmt = (
                select(*table.columns)
                .where(table.user_column.in_(chunk))
                .order_by(table.order_by)
            )
            records.extend(await self._read(dataset, stmt, table.record))

        logger.debug(
            "analytics.membership_read",
            dataset=dataset.value,
            user_count=len(ids),
            rows=len(records),
        )
        return tuple(records)

    async def fetch_transformation_details(
        self,
        limit: int | None = None,
        user_id: str | None = None,
    ) -> Sequence[TransformationDetail]:
        """Newest transformations with the owner's e-mail joined in.

        Args:
            limit: Maximum rows to return, or None for all.
            user_id: Restrict to one account (optional).

        Returns:
            Transformation details, newest first.

        Raises:
            DataFetchFailedError: If the read fails.
        """
        stmt = (
            select(PhotoTransformation, AuthUser.email)
            .outerjoin(AuthUser, AuthUser.id == PhotoTransformation.user_id)
            .order_by(PhotoTransformation.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        if user_id is not None:
            stmt = stmt.where(PhotoTransformation.user_id == user_id)

        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except (SQLAlchemyError, OSError) as e:
            raise self._fetch_failed(Dataset.TRANSFORMATIONS, e) from e

        return tuple(
            TransformationDetail(
                id=job.id,
                user_id=job.user_id,
                user_email=email,
                original_image_name=job.original_image_name,
                original_image_url=job.original_image_url,
                final_image_url=final_image_url(job.transformed_images),
                transformed_count=_image_count(job.transformed_images),
                reprocessing_count=job.reprocessing_count,
                status=job.status,
                created_at=job.created_at,
            )
            for job, email in rows
        )

    async def find_account_by_email(self, email: str) -> AccountRecord | None:
        """Look up an account by e-mail, ignoring case and surrounding spaces.

        Raises:
            DataFetchFailedError: If the read fails.
        """
        table = _TABLES[Dataset.ACCOUNTS]
        condition: ColumnElement[bool] = func.lower(AuthUser.email) == email.strip().lower()
        stmt = select(*table.columns).where(condition).limit(1)
        records = await self._read(Dataset.ACCOUNTS, stmt, AccountRecord)
        return records[0] if records else None

    async def _read(
        self,
        dataset: Dataset,
        stmt: Select[Any],
        record: type[BaseModel],
    ) -> tuple[Any, ...]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except (SQLAlchemyError, OSError) as e:
            raise self._fetch_failed(dataset, e) from e
        return tuple(record.model_validate(row, from_attributes=True) for row in rows)

    @staticmethod
    def _fetch_failed(dataset: Dataset, error: Exception) -> DataFetchFailedError:
        logger.error(
            "analytics.read_failed",
            dataset=dataset.value,
            error=str(error),
            error_type=type(error).__name__,
        )
        return DataFetchFailedError(
            dataset=dataset.value,
            details={"error_type": type(error).__name__},
        )
