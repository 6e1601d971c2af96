"""Tests for JSON logging and request ID tracking."""
import asyncio
import json
import logging
import sys

import pytest

from narrative_gateway.structured_logging import (
    JSONFormatter,
    get_request_id,
    log_generation,
    log_request,
    mask_ip,
    request_id_var,
    set_request_id,
    setup_logging,
)


def make_record(message="hello", **extra):
    record = logging.LogRecord("narrative_gateway.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRequestId:

    def test_generated_when_missing(self):
        async def scenario():
            request_id = set_request_id()
            return request_id, get_request_id()

        request_id, seen = asyncio.run(scenario())
        assert len(request_id) == 12
        assert seen == request_id

    def test_explicit_id_kept(self):
        async def scenario():
            return set_request_id("trace-1"), get_request_id()

        assert asyncio.run(scenario()) == ("trace-1", "trace-1")

    def test_isolated_between_tasks(self):
        async def worker(name):
            set_request_id(name)
            await asyncio.sleep(0)
            return get_request_id()

        async def scenario():
            return await asyncio.gather(worker("a"), worker("b"))

        assert asyncio.run(scenario()) == ["a", "b"]


class TestJSONFormatter:

    def test_fields(self):
        token = request_id_var.set("req-9")
        try:
            line = JSONFormatter("svc").format(make_record(fields={"endpoint": "summarize-note"}))
        finally:
            request_id_var.reset(token)

        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["service"] == "svc"
        assert entry["request_id"] == "req-9"
        assert entry["fields"] == {"endpoint": "summarize-note"}

    def test_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record(exc_info=sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]


class TestMaskIp:

    @pytest.mark.parametrize("ip,expected", [
        ("203.0.113.42", "203.0.xxx.xxx"),
        ("2001:db8:85a3::8a2e:370:7334", "2001:db8:xxxx"),
        ("testclient", "xxx"),
    ])
    def test_mask(self, ip, expected):
        assert mask_ip(ip) == expected


class TestLogHelpers:

    def test_request_levels(self, caplog):
        caplog.set_level(logging.INFO, logger="narrative_gateway.http")
        log_request("POST", "/api/ai/summarize-note", 200, 12.346, "203.0.113.42")
        log_request("POST", "/api/ai/summarize-note", 429, 1.0)
        log_request("POST", "/api/ai/summarize-note", 503, 1.0)

        levels = [r.levelno for r in caplog.records]
        assert levels == [logging.INFO, logging.WARNING, logging.ERROR]
        assert caplog.records[0].fields["client_ip"] == "203.0.xxx.xxx"
        assert caplog.records[0].fields["duration_ms"] == 12.35

    def test_generation_outcomes(self, caplog):
        caplog.set_level(logging.INFO, logger="narrative_gateway.generation")
        log_generation("summarize-report", "generated", model="m", tokens=40, duration_ms=5)
        log_generation("summarize-report", "denied", code="daily_limit_reached")
        log_generation("summarize-report", "failed", code="invalid_api_key")

        generated, denied, failed = caplog.records
        assert generated.levelno == logging.INFO
        assert generated.fields == {
            "endpoint": "summarize-report", "outcome": "generated", "model": "m", "tokens": 40, "duration_ms": 5,
        }
        assert denied.levelno == logging.WARNING
        assert failed.levelno == logging.ERROR
        assert failed.fields["code"] == "invalid_api_key"


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_handler(self):
        setup_logging("debug")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_plain_handler_and_unknown_level(self):
        setup_logging("chatty", use_json=False)
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
