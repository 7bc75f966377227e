"""Tests for log module."""

import logging

from gmorph.log import PACKAGE_LOGGER, configure_logging, get_logger


class TestConfigureLogging:
    def test_handlers_attached_once(self, tmp_path):
        log_file = tmp_path / "logs" / "run.log"

        configure_logging("debug", log_file)
        logger = configure_logging("debug", log_file)

        assert logger.name == PACKAGE_LOGGER
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        assert log_file.parent.is_dir()

    def test_file_receives_child_records(self, tmp_path):
        log_file = tmp_path / "run.log"
        configure_logging(logging.INFO, log_file)

        get_logger("pipeline").info("Read 30 specimens")
        get_logger("pipeline").debug("hidden")
        for handler in logging.getLogger(PACKAGE_LOGGER).handlers:
            handler.flush()

        text = log_file.read_text()
        assert "gmorph.pipeline - INFO - Read 30 specimens" in text
        assert "hidden" not in text


class TestGetLogger:
    def test_prefixes_package_name(self):
        assert get_logger("cli").name == "gmorph.cli"

    def test_keeps_qualified_names(self):
        assert get_logger("gmorph.gpa").name == "gmorph.gpa"
        assert get_logger("gmorph").name == "gmorph"
