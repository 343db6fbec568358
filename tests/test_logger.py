"""
Test suite for logging setup.
"""

import logging
import os
import shutil
import tempfile

import pytest

from image_trust.utils.logger import setup_logging, resolve_level, NOISY_LOGGERS


class TestSetupLogging:
    """Test cases for setup_logging."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        root = logging.getLogger()
        self.saved_handlers = list(root.handlers)
        self.saved_level = root.level

    def teardown_method(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            if handler not in self.saved_handlers:
                root.removeHandler(handler)
                handler.close()
        for handler in self.saved_handlers:
            if handler not in root.handlers:
                root.addHandler(handler)
        root.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_resolve_level(self):
        assert resolve_level("debug") == logging.DEBUG
        assert resolve_level(" Warning ") == logging.WARNING
        with pytest.raises(ValueError):
            resolve_level("chatty")

    def test_console_only(self):
        root = setup_logging("DEBUG")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_log_file(self):
        path = os.path.join(self.temp_dir, "webhook.log")

        setup_logging("INFO", path)
        logging.getLogger("image_trust.test").info("pod admitted")
        for handler in logging.getLogger().handlers:
            handler.flush()

        with open(path) as f:
            assert "image_trust.test - INFO - pod admitted" in f.read()

    def test_repeated_setup_replaces_handlers(self):
        setup_logging("INFO")
        root = setup_logging("ERROR")

        assert len(root.handlers) == 1
        assert logging.getLogger("urllib3").level == logging.ERROR
