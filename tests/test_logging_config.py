"""
Tests: log formatters, request context tagging and handler setup.
"""

import json
import logging
import sys

import pytest
from flask import g

from rfp_platform.middleware.logging_config import (
    JSONFormatter,
    RequestContextFilter,
    TextFormatter,
    configure_logging,
)

pytestmark = pytest.mark.unit


def _record(msg="Response %d submitted", args=(5,), exc_info=None, **extra):
    record = logging.LogRecord("rfp_platform.services.x", logging.INFO, __file__, 10, msg, args, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_context_nested_under_ctx(self):
        line = JSONFormatter().format(_record(rfp_id=3, company_id=1, method="GET", status=200))
        entry = json.loads(line)
        assert entry["msg"] == "Response 5 submitted"
        assert entry["level"] == "INFO"
        assert entry["ctx"] == {"rfp_id": 3, "company_id": 1}
        assert entry["method"] == "GET"
        assert entry["status"] == 200

    def test_no_ctx_without_context(self):
        assert "ctx" not in json.loads(JSONFormatter().format(_record()))

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            line = JSONFormatter().format(_record(exc_info=sys.exc_info()))
        assert "ValueError: boom" in json.loads(line)["exception"]


class TestTextFormatter:
    def test_tags_and_duration(self):
        line = TextFormatter(color=False).format(_record(rfp_id=3, request_id="ab12", duration_ms=41.6))
        assert line.endswith("Response 5 submitted  rfp=3 req=ab12 [42ms]")

    def test_plain_message(self):
        line = TextFormatter(color=False).format(_record())
        assert line.endswith("rfp_platform.services.x: Response 5 submitted")
        assert "\033[" not in line


class TestRequestContextFilter:
    def test_outside_request_is_noop(self):
        record = _record()
        assert RequestContextFilter().filter(record) is True
        assert getattr(record, "rfp_id", None) is None

    def test_tags_from_request(self, app):
        with app.test_request_context("/api/v1/rfps/9/timeline"):
            g.request_id = "req-1"
            g.jwt_user_id = 4
            g.jwt_company_id = 2
            record = _record()
            RequestContextFilter().filter(record)
        assert (record.request_id, record.user_id, record.company_id) == ("req-1", 4, 2)
        assert record.rfp_id == 9

    def test_explicit_extra_wins(self, app):
        with app.test_request_context("/"):
            g.jwt_company_id = 2
            record = _record(company_id=7)
            RequestContextFilter().filter(record)
        assert record.company_id == 7


class TestConfigureLogging:
    @pytest.fixture()
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_testing_app_logs_text_at_debug(self, app, restore_root, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        handler = configure_logging(app)
        assert isinstance(handler.formatter, TextFormatter)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger().handlers == [handler]

    def test_env_overrides(self, app, restore_root, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "warning")
        handler = configure_logging(app)
        assert isinstance(handler.formatter, JSONFormatter)
        assert handler.level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, app, restore_root, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        assert configure_logging(app).level == logging.INFO

    def test_repeated_setup_keeps_one_handler(self, app, restore_root):
        configure_logging(app)
        configure_logging(app)
        assert len(logging.getLogger().handlers) == 1
