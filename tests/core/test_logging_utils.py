"""Tests for structured logging helpers."""

from __future__ import annotations

import json
import logging

import pytest
from loguru import logger as loguru_logger

from startpage.core.logging_utils import InterceptHandler, setup_json_logging


@pytest.fixture
def captured():
    messages: list[str] = []
    root = logging.getLogger()
    previous_handlers, previous_level = list(root.handlers), root.level
    setup_json_logging("DEBUG", use_json=False)
    sink_id = loguru_logger.add(messages.append, serialize=True, level="DEBUG")
    try:
        yield messages
    finally:
        loguru_logger.remove(sink_id)
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)


def last_record(messages: list[str]) -> dict:
    return json.loads(messages[-1])["record"]


class TestSetupJsonLogging:
    def test_routes_stdlib_records_into_loguru(self, captured):
        logging.getLogger("startpage.test").info("kv_written", extra={"revision": 7})

        assert any(isinstance(h, InterceptHandler) for h in logging.getLogger().handlers)
        record = last_record(captured)
        assert record["message"] == "kv_written"
        assert record["level"]["name"] == "INFO"
        assert record["extra"]["revision"] == 7
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_redacts_secrets(self, captured):
        logging.getLogger("startpage.test").warning(
            "sync_login_failed", extra={"token": "abc", "password": "pw", "email": "a***@x.test"}
        )

        extra = last_record(captured)["extra"]
        assert extra["token"] == "***"
        assert extra["password"] == "***"
        assert extra["email"] == "a***@x.test"

    def test_exception_is_attached(self, captured):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logging.getLogger("startpage.test").exception("sync_pull_crashed")

        record = last_record(captured)
        assert record["message"] == "sync_pull_crashed"
        assert record["exception"]["type"] == "RuntimeError"
        assert record["exception"]["value"] == "boom"
