"""Tests for exceptions and RFC 7807 problem responses."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.core.exceptions import (
    AggregationTimeoutError,
    AnalyticsError,
    DataFetchFailedError,
    InvalidRangeError,
    NotFoundError,
    register_exception_handlers,
)
from app.core.problem_details import ERROR_TYPES, create_problem_detail


@pytest.fixture
async def error_client():
    """Client for a bare app whose routes raise each error type."""
    error_app = FastAPI()
    register_exception_handlers(error_app)

    @error_app.get("/fetch")
    async def fetch() -> None:
        raise DataFetchFailedError(dataset="payments")

    @error_app.get("/range")
    async def bad_range() -> None:
        raise InvalidRangeError(message="end_date is before start_date")

    @error_app.get("/crash")
    async def crash() -> None:
        raise RuntimeError("pool exhausted on db-replica-2")

    @error_app.get("/items/{item_id}")
    async def item(item_id: int) -> dict[str, int]:
        return {"item_id": item_id}

    async with AsyncClient(
        transport=ASGITransport(app=error_app, raise_app_exceptions=False),
        base_url="http://test",
    ) as ac:
        yield ac


class TestExceptionClasses:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize(
        ("error", "code", "status_code"),
        [
            (NotFoundError(), "NOT_FOUND", 404),
            (InvalidRangeError(), "INVALID_RANGE", 400),
            (DataFetchFailedError(dataset="accounts"), "DATA_FETCH_FAILED", 502),
            (AggregationTimeoutError(), "AGGREGATION_TIMEOUT", 504),
        ],
    )
    def test_codes(self, error: AnalyticsError, code: str, status_code: int) -> None:
        """Each error maps to its code and HTTP status."""
        assert error.code == code
        assert error.status_code == status_code
        assert isinstance(error, AnalyticsError)

    def test_data_fetch_failed_carries_dataset(self) -> None:
        """The failing dataset is kept on the error and in details."""
        error = DataFetchFailedError(dataset="payments", details={"error_type": "OSError"})

        assert error.dataset == "payments"
        assert error.details == {"dataset": "payments", "error_type": "OSError"}
        assert "payments" in error.message

    def test_title(self) -> None:
        """Title is derived from the code."""
        assert DataFetchFailedError(dataset="x").title == "Data Fetch Failed"


class TestProblemResponses:
    """Tests for the registered exception handlers."""

    async def test_data_fetch_failed(self, error_client: AsyncClient) -> None:
        """Should render a 502 problem naming the dataset."""
        response = await error_client.get("/fetch")

        assert response.status_code == 502
        assert response.headers["content-type"].startswith("application/problem+json")
        data = response.json()
        assert data["type"] == ERROR_TYPES["DATA_FETCH_FAILED"]
        assert data["code"] == "DATA_FETCH_FAILED"
        assert data["dataset"] == "payments"
        assert data["status"] == 502

    async def test_invalid_range(self, error_client: AsyncClient) -> None:
        """Should render a 400 problem without a dataset."""
        response = await error_client.get("/range")

        assert response.status_code == 400
        data = response.json()
        assert data["detail"] == "end_date is before start_date"
        assert "dataset" not in data

    async def test_validation_error(self, error_client: AsyncClient) -> None:
        """Should render field-level errors for bad input."""
        response = await error_client.get("/items/abc")

        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["errors"][0]["field"] == "path.item_id"

    async def test_unhandled_error(self, error_client: AsyncClient) -> None:
        """Should hide internals behind a generic 500 problem."""
        response = await error_client.get("/crash")

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "INTERNAL_ERROR"
        assert "db-replica-2" not in data["detail"]
        assert "RuntimeError" not in data["detail"]
        assert data["detail"].startswith("An unexpected error occurred")


def test_problem_detail_unknown_code_gets_derived_type():
    """Unknown codes still get a type URI."""
    problem = create_problem_detail(status=418, title="Teapot", error_code="I_AM_A_TEAPOT")

    assert problem.type == "/errors/i_am_a_teapot"
    assert problem.request_id is None
