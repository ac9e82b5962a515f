"""Unit tests for RequestLoggingMiddleware."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from trackforge.infrastructure.observability.middleware import (
    CORRELATION_HEADER,
    RequestLoggingMiddleware,
)

MIDDLEWARE = "trackforge.infrastructure.observability.middleware"


class TestRequestLoggingMiddleware:
    """Test suite for RequestLoggingMiddleware."""

    @pytest.fixture
    def app(self) -> FastAPI:
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware)

        @app.get("/test")
        async def test_endpoint() -> dict[str, str]:
            return {"message": "test"}

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        @app.get("/error")
        async def error_endpoint() -> None:
            raise ValueError("Test error")

        return app

    @pytest.fixture
    def client(self, app: FastAPI) -> TestClient:
        return TestClient(app, raise_server_exceptions=False)

    def test_successful_request_logs_start_and_completion(self, client: TestClient) -> None:
        """Both the arrow line and the completion line are written."""
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            response = client.get("/test")

        assert response.status_code == 200
        assert mock_logger.info.call_count == 2
        completion_args = mock_logger.info.call_args_list[1][0]
        assert "GET" in completion_args
        assert "/test" in completion_args
        assert 200 in completion_args

    def test_health_is_not_logged(self, client: TestClient) -> None:
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            response = client.get("/health")

        assert response.status_code == 200
        mock_logger.info.assert_not_called()

    def test_correlation_id_header_is_echoed(self, client: TestClient) -> None:
        response = client.get("/test", headers={CORRELATION_HEADER: "custom-correlation-id"})

        assert response.headers[CORRELATION_HEADER] == "custom-correlation-id"

    def test_correlation_id_generated_when_missing(self, client: TestClient) -> None:
        """Without the header a fresh UUID is set and returned."""
        with patch(f"{MIDDLEWARE}.set_correlation_id") as mock_set:
            client.get("/test")

        mock_set.assert_called_once_with(None)

        response = client.get("/test")
        assert len(response.headers[CORRELATION_HEADER]) == 36

    def test_unhandled_error_is_logged(self, client: TestClient) -> None:
        with patch(f"{MIDDLEWARE}.logger") as mock_logger:
            response = client.get("/error")

        assert response.status_code == 500
        mock_logger.exception.assert_called_once()
        assert mock_logger.exception.call_args.kwargs["extra"]["error_type"] == "ValueError"
