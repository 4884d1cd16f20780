import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.middleware.request_id_middleware import (
    RequestIDMiddleware,
    get_request_id,
    normalize_request_id,
)


@pytest.fixture
def app():
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/echo")
    def echo():
        return {"request_id": get_request_id()}

    return app


class TestNormalizeRequestId:
    def test_valid_id_is_kept(self):
        assert normalize_request_id("evt-retry.42") == "evt-retry.42"

    @pytest.mark.parametrize("raw", [None, "", "bad id\nwith newline", "!" + "x" * 10])
    def test_invalid_id_is_replaced(self, raw):
        assert normalize_request_id(raw).startswith("req_")


class TestRequestIDMiddleware:
    def test_generated_id_is_visible_to_handlers(self, app):
        response = TestClient(app).get("/echo")

        request_id = response.headers["X-Request-ID"]
        assert request_id.startswith("req_")
        assert response.json()["request_id"] == request_id

    def test_correlation_header_is_honoured(self, app):
        response = TestClient(app).get("/echo", headers={"X-Correlation-ID": "corr-1"})

        assert response.headers["X-Request-ID"] == "corr-1"

    def test_context_is_cleared_after_request(self, app):
        TestClient(app).get("/echo")

        assert get_request_id() is None


def test_request_id_reaches_log_records(app, caplog):
    from src.config.logging_config import RequestContextFilter

    handler_logger = logging.getLogger("tests.request_id")
    handler_logger.addFilter(RequestContextFilter())

    @app.get("/log")
    def log_something():
        handler_logger.warning("inside request")
        return {}

    with caplog.at_level(logging.WARNING, logger="tests.request_id"):
        TestClient(app).get("/log", headers={"X-Request-ID": "req-log-1"})

    assert caplog.records[-1].request_id == "req-log-1"
