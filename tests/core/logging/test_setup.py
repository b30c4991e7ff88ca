"""Tests for logging setup."""

import logging
from pathlib import Path

import pytest

from core.logging.context import get_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import ArchivingTimedRotatingFileHandler, get_log_file_path, setup_logging


@pytest.fixture(autouse=True)
def restore_root_handlers():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestGetLogFilePath:
    def test_date_folder_and_name(self):
        path = get_log_file_path(Path("logs"))
        assert path.parent.parent == Path("logs")
        assert path.name.startswith("audit-bridge_")
        assert path.suffix == ".log"

    def test_instance_id_suffix(self):
        path = get_log_file_path(Path("logs"), instance_id="calm-otter")
        assert path.stem.endswith("_calm-otter")


class TestSetupLogging:
    def test_file_and_console_handlers(self, tmp_path):
        setup_logging(log_dir=tmp_path, worker_id="calm-otter")
        handlers = logging.getLogger().handlers

        file_handlers = [h for h in handlers if isinstance(h, ArchivingTimedRotatingFileHandler)]
        assert len(file_handlers) == 1
        assert isinstance(file_handlers[0].formatter, JSONFormatter)
        assert "calm-otter" in file_handlers[0].baseFilename
        assert (Path(file_handlers[0].baseFilename).parent / "archive").is_dir()

        assert get_log_context()["worker_id"] == "calm-otter"

    def test_stdout_only_json(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True, json_format=True)
        handlers = logging.getLogger().handlers

        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, JSONFormatter)
        assert not any(tmp_path.iterdir())

    def test_stdout_only_console(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True, json_format=False)
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)

    def test_suppresses_noisy_loggers(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)
        assert logging.getLogger("botocore").level == logging.WARNING
