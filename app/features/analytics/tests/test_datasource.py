"""Tests for the SQLAlchemy data source (database mocked)."""

from datetime import UTC, date, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import DataFetchFailedError
from app.features.analytics import datasource
from app.features.analytics.datasource import SQLAlchemyDataSource, final_image_url
from app.features.analytics.schemas import AccountRecord, Dataset, PaymentRecord


def make_session_maker(rows: list) -> tuple[MagicMock, AsyncMock]:
    """Session factory whose sessions return ``rows`` from every execute."""
    session = AsyncMock()
    result = MagicMock()
    result.all.return_value = rows
    session.execute.return_value = result

    session_maker = MagicMock()
    session_maker.return_value.__aenter__.return_value = session
    session_maker.return_value.__aexit__.return_value = False
    return session_maker, session


def executed_sql(session: AsyncMock) -> str:
    return str(session.execute.call_args.args[0])


class TestFinalImageUrl:
    """Tests for final_image_url."""

    def test_last_url_in_list(self) -> None:
        """Test the last element is the final image."""
        assert final_image_url(["a.jpg", "b.jpg"]) == "b.jpg"

    def test_objects_with_url(self) -> None:
        """Test elements may be objects carrying a url."""
        assert final_image_url([{"url": "a.jpg"}, {"url": "b.jpg"}]) == "b.jpg"

    def test_json_encoded_string(self) -> None:
        """Test a JSON-encoded array is decoded first."""
        assert final_image_url('["a.jpg", "c.jpg"]') == "c.jpg"

    @pytest.mark.parametrize("value", [None, [], "", "not json", {"url": "a.jpg"}, [{}]])
    def test_missing(self, value) -> None:
        """Test anything without a usable last image gives None."""
        assert final_image_url(value) is None


class TestFetchRange:
    """Tests for SQLAlchemyDataSource.fetch_range."""

    async def test_returns_records(self) -> None:
        """Should convert rows into immutable records."""
        created = datetime(2024, 1, 1, 12, tzinfo=UTC)
        row = SimpleNamespace(id="u1", created_at=created, email="a@b.com", email_confirmed_at=None)
        session_maker, _session = make_session_maker([row])
        source = SQLAlchemyDataSource(session_maker, UTC)

        records = await source.fetch_range(Dataset.ACCOUNTS, date(2024, 1, 1), date(2024, 1, 3))

        assert records == (AccountRecord(id="u1", created_at=created, email="a@b.com"),)

    async def test_bounded_query(self) -> None:
        """Should filter on the timestamp column when bounds are given."""
        session_maker, session = make_session_maker([])
        source = SQLAlchemyDataSource(session_maker, UTC)

        await source.fetch_range(Dataset.PAYMENTS, date(2024, 1, 1), date(2024, 1, 3))

        sql = executed_sql(session)
        assert "FROM payments" in sql
        assert "payments.created_at >=" in sql
        assert "payments.created_at <" in sql

    async def test_unbounded_query(self) -> None:
        """Should scan the whole table without bounds."""
        session_maker, session = make_session_maker([])
        source = SQLAlchemyDataSource(session_maker, UTC)

        await source.fetch_range(Dataset.STYLE_SELECTIONS)

        sql = executed_sql(session)
        assert "FROM user_styles" in sql
        assert "WHERE" not in sql
        assert "ORDER BY user_styles.updated_at" in sql

    async def test_range_ending_on_last_calendar_day(self) -> None:
        """Should query a range ending on date.max instead of overflowing."""
        session_maker, session = make_session_maker([])
        source = SQLAlchemyDataSource(session_maker, UTC)

        records = await source.fetch_range(Dataset.ACCOUNTS, date(9999, 12, 25), date.max)

        assert records == ()
        params = session.execute.call_args.args[0].compile().params
        assert datetime.max.replace(tzinfo=UTC) in params.values()

    async def test_decimal_values(self) -> None:
        """Should keep payment values as Decimal."""
        row = SimpleNamespace(
            user_id="u1",
            value=Decimal("29.90"),
            created_at=None,
            status="CONFIRMED",
            plan_name="Basic",
            billing_type="CREDIT_CARD",
        )
        session_maker, _session = make_session_maker([row])
        source = SQLAlchemyDataSource(session_maker, UTC)

        records = await source.fetch_range(Dataset.PAYMENTS)

        assert isinstance(records[0], PaymentRecord)
        assert records[0].value == Decimal("29.90")

    async def test_database_error_is_wrapped(self) -> None:
        """Should raise DataFetchFailedError naming the dataset."""
        session_maker, session = make_session_maker([])
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        source = SQLAlchemyDataSource(session_maker, UTC)

        with pytest.raises(DataFetchFailedError) as exc_info:
            await source.fetch_range(Dataset.PAYMENTS, date(2024, 1, 1), date(2024, 1, 1))

        assert exc_info.value.dataset == "payments"
        assert exc_info.value.details["error_type"] == "OperationalError"

    async def test_connection_error_is_wrapped(self) -> None:
        """Should wrap socket-level failures too."""
        session_maker, session = make_session_maker([])
        session.execute.side_effect = ConnectionRefusedError("refused")
        source = SQLAlchemyDataSource(session_maker, UTC)

        with pytest.raises(DataFetchFailedError) as exc_info:
            await source.fetch_range(Dataset.ACCOUNTS)

        assert exc_info.value.dataset == "accounts"


class TestFetchForUsers:
    """Tests for SQLAlchemyDataSource.fetch_for_users."""

    async def test_no_ids_skips_query(self) -> None:
        """Should not open a session for an empty id list."""
        session_maker, _session = make_session_maker([])
        source = SQLAlchemyDataSource(session_maker, UTC)

        records = await source.fetch_for_users(Dataset.TRANSFORMATIONS, [])

        assert records == ()
        session_maker.assert_not_called()

    async def test_ids_are_chunked(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should split large id lists across several queries."""
        monkeypatch.setattr(datasource, "USER_ID_CHUNK_SIZE", 2)
        session_maker, session = make_session_maker([])
        source = SQLAlchemyDataSource(session_maker, UTC)

        await source.fetch_for_users(Dataset.PAYMENTS, ["u1", "u2", "u3", "u2"])

        assert session.execute.await_count == 2
        assert "payments.user_id IN" in executed_sql(session)


class TestLookups:
    """Tests for the lookup reads."""

    async def test_transformation_details(self) -> None:
        """Should join the owner's e-mail and derive the final image."""
        job = SimpleNamespace(
            id="job-1",
            user_id="u1",
            original_image_name="me.jpg",
            original_image_url="https://cdn/me.jpg",
            transformed_images=["https://cdn/1.jpg", "https://cdn/2.jpg"],
            reprocessing_count=1,
            status="completed",
            created_at=datetime(2024, 1, 1, tzinfo=UTC),
        )
        session_maker, session = make_session_maker([(job, "me@example.com")])
        source = SQLAlchemyDataSource(session_maker, UTC)

        details = await source.fetch_transformation_details(limit=5)

        assert len(details) == 1
        assert details[0].user_email == "me@example.com"
        assert details[0].final_image_url == "https://cdn/2.jpg"
        assert details[0].transformed_count == 2
        sql = executed_sql(session)
        assert "LEFT OUTER JOIN auth.users" in sql
        assert "LIMIT" in sql

    async def test_find_account_by_email_missing(self) -> None:
        """Should return None when no account matches."""
        session_maker, session = make_session_maker([])
        source = SQLAlchemyDataSource(session_maker, UTC)

        assert await source.find_account_by_email("Nobody@Example.com") is None
        assert "lower(auth.users.email)" in executed_sql(session)
