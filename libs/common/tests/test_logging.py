"""Tests for structured logging and trace ID propagation.

Tests verify:
- JSON schema of formatted records, including extra fields and exceptions
- configure_logging level validation and handler replacement
- LogContext scoping
- Trace ID echo by the ASGI middleware
- Trace ID forwarding by the traced httpx client
"""

import json
import logging
import sys

import pytest
import respx
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import Response

from libs.common.logging import (
    TRACE_ID_HEADER,
    JSONFormatter,
    LogContext,
    add_trace_id_middleware,
    configure_logging,
    get_trace_id,
    get_traced_client,
    log_with_context,
)


def make_record(msg: str = "Test message", **attributes: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="/path/to/dispatcher.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in attributes.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    @pytest.fixture()
    def formatter(self) -> JSONFormatter:
        return JSONFormatter(service_name="signal_bridge")

    def test_required_fields(self, formatter: JSONFormatter) -> None:
        entry = json.loads(formatter.format(make_record(trace_id="trace-123")))

        assert entry["level"] == "INFO"
        assert entry["service"] == "signal_bridge"
        assert entry["trace_id"] == "trace-123"
        assert entry["message"] == "Test message"
        assert entry["timestamp"].endswith("Z")
        assert entry["source"]["line"] == 42

    def test_extra_fields_become_context(self, formatter: JSONFormatter) -> None:
        record = make_record(account_id="acc-1", command_id="cmd_abc")

        entry = json.loads(formatter.format(record))

        assert entry["context"] == {"account_id": "acc-1", "command_id": "cmd_abc"}

    def test_explicit_context_wins(self, formatter: JSONFormatter) -> None:
        record = make_record(context={"signal_id": "sig-1"}, account_id="ignored")

        entry = json.loads(formatter.format(record))

        assert entry["context"] == {"signal_id": "sig-1"}

    def test_context_disabled(self) -> None:
        formatter = JSONFormatter(service_name="test", include_context=False)

        entry = json.loads(formatter.format(make_record(account_id="acc-1")))

        assert "context" not in entry

    def test_exception_info(self, formatter: JSONFormatter) -> None:
        try:
            raise RuntimeError("store down")
        except RuntimeError:
            record = make_record()
            record.exc_info = sys.exc_info()

        entry = json.loads(formatter.format(record))

        assert entry["exception"]["type"] == "RuntimeError"
        assert entry["exception"]["message"] == "store down"
        assert "Traceback" in entry["exception"]["traceback"]

    def test_non_serializable_values_are_stringified(self, formatter: JSONFormatter) -> None:
        entry = json.loads(formatter.format(make_record(when=object())))

        assert entry["context"]["when"].startswith("<object object")


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_invalid_level(self) -> None:
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(service_name="test", log_level="LOUD")

    def test_repeated_calls_replace_handler(self) -> None:
        configure_logging(service_name="test")
        root = configure_logging(service_name="test", log_level="debug")

        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

    def test_output_carries_trace_id(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = configure_logging(service_name="test")

        with LogContext("cycle-1"):
            log_with_context(logger, "WARNING", "Account skipped", account_id="acc-1")

        entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert entry["trace_id"] == "cycle-1"
        assert entry["context"] == {"account_id": "acc-1"}


class TestLogContext:
    def test_generates_and_clears(self) -> None:
        with LogContext() as trace_id:
            assert get_trace_id() == trace_id
        assert get_trace_id() is None

    def test_restores_outer_trace_id(self) -> None:
        with LogContext("outer"):
            with LogContext("inner"):
                assert get_trace_id() == "inner"
            assert get_trace_id() == "outer"


class TestTraceIDMiddleware:
    @pytest.fixture()
    def client(self) -> TestClient:
        app = FastAPI()
        add_trace_id_middleware(app)

        @app.get("/probe")
        async def probe() -> dict:
            return {"trace_id": get_trace_id()}

        return TestClient(app)

    def test_echoes_inbound_trace_id(self, client: TestClient) -> None:
        response = client.get("/probe", headers={TRACE_ID_HEADER: "ea-poll-7"})

        assert response.json()["trace_id"] == "ea-poll-7"
        assert response.headers[TRACE_ID_HEADER] == "ea-poll-7"

    def test_generates_when_missing(self, client: TestClient) -> None:
        response = client.get("/probe")

        trace_id = response.json()["trace_id"]
        assert len(trace_id) == 36
        assert response.headers[TRACE_ID_HEADER] == trace_id


class TestTracedClient:
    @pytest.mark.asyncio()
    @respx.mock
    async def test_forwards_trace_id(self) -> None:
        route = respx.get("http://upstream.test/ping").mock(return_value=Response(200))

        async with get_traced_client(base_url="http://upstream.test") as client:
            with LogContext("cycle-9"):
                await client.get("/ping")
            await client.get("/ping")

        assert route.calls[0].request.headers[TRACE_ID_HEADER] == "cycle-9"
        assert TRACE_ID_HEADER not in route.calls[1].request.headers
