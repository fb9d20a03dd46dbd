"""
Tests for package logging and request id binding.
"""

import asyncio
import logging

import pytest

from docrank.config.settings import settings
from docrank.utils.logger import (
    NO_REQUEST,
    PACKAGE_LOGGER,
    LoggerMixin,
    RequestIdFilter,
    configure_logging,
    current_request_id,
    get_logger,
    request_scope,
)


class Worker(LoggerMixin):
    pass


def make_record():
    return logging.LogRecord("docrank.test", logging.INFO, __file__, 1, "message", None, None)


class TestRequestScope:
    """Test request id binding."""

    def test_outside_request(self):
        assert current_request_id() == NO_REQUEST

    def test_scope_binds_and_restores(self):
        with request_scope("abc123") as request_id:
            assert request_id == "abc123"
            assert current_request_id() == "abc123"
        assert current_request_id() == NO_REQUEST

    def test_generated_ids_are_distinct(self):
        with request_scope() as first:
            pass
        with request_scope() as second:
            pass

        assert first != second
        assert len(first) == 8

    @pytest.mark.asyncio
    async def test_concurrent_requests_keep_their_ids(self):
        async def handle(request_id):
            with request_scope(request_id):
                await asyncio.sleep(0)
                return current_request_id()

        assert await asyncio.gather(handle("r1"), handle("r2")) == ["r1", "r2"]

    def test_filter_stamps_record(self):
        record = make_record()

        with request_scope("req-7"):
            assert RequestIdFilter().filter(record) is True

        assert record.request_id == "req-7"


class TestLoggers:
    """Test logger naming and handler setup."""

    def test_loggers_nest_under_package(self):
        assert get_logger("docrank.ranking_pipeline").name == "docrank.ranking_pipeline"
        assert get_logger("conftest").name == "docrank.conftest"

    def test_handlers_only_on_package_logger(self):
        get_logger("docrank.a")
        get_logger("docrank.b")

        package_logger = logging.getLogger(PACKAGE_LOGGER)
        assert package_logger.handlers
        assert all(any(isinstance(f, RequestIdFilter) for f in h.filters) for h in package_logger.handlers)
        assert not logging.getLogger("docrank.a").handlers

    def test_file_handler_added_once(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "LOGS_DIR", tmp_path / "logs")
        package_logger = configure_logging(level="DEBUG", log_file="docrank.log")
        configure_logging(level="DEBUG", log_file="docrank.log")

        file_handlers = [h for h in package_logger.handlers if isinstance(h, logging.FileHandler)]
        try:
            assert len(file_handlers) == 1
            assert package_logger.level == logging.DEBUG

            with request_scope("file-req"):
                get_logger("docrank.file_test").info("written to file")
            file_handlers[0].flush()

            line = (tmp_path / "logs" / "docrank.log").read_text().strip()
            assert "[file-req] written to file" in line
            assert "docrank.file_test" in line
        finally:
            for handler in file_handlers:
                package_logger.removeHandler(handler)
                handler.close()
            configure_logging()

    def test_mixin_logger_named_after_class(self):
        worker = Worker()

        assert worker.logger.name == f"docrank.{__name__}.Worker"
        assert worker.logger is worker.logger
