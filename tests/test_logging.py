"""Tests for logging setup."""

import logging
import os
import tempfile
import unittest

from MipForge.core import setup_logging


class TestSetupLogging(unittest.TestCase):
    def setUp(self):
        self.logger = logging.getLogger("mipforge")
        self.root = logging.getLogger()
        self.saved_level = self.logger.level
        self.saved_handlers = list(self.logger.handlers)
        self.guard = logging.NullHandler()
        # Simulate an embedding host that already configured logging.
        self.root.addHandler(self.guard)

    def tearDown(self):
        for handler in list(self.logger.handlers):
            if handler not in self.saved_handlers:
                self.logger.removeHandler(handler)
                handler.close()
        self.root.removeHandler(self.guard)
        self.logger.setLevel(self.saved_level)

    def test_host_handlers_are_kept(self):
        before = list(self.root.handlers)
        setup_logging("DEBUG")
        self.assertEqual(self.root.handlers, before)
        self.assertEqual(self.logger.level, logging.DEBUG)

    def test_file_handler_attached_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = os.path.join(tmpdir, "logs", "mipforge.log")
            setup_logging("INFO", log_file)
            setup_logging("INFO", log_file)
            file_handlers = [h for h in self.logger.handlers
                             if isinstance(h, logging.FileHandler)
                             and h not in self.saved_handlers]
            self.assertEqual(len(file_handlers), 1)
            self.assertTrue(os.path.isfile(log_file))
            for handler in file_handlers:
                self.logger.removeHandler(handler)
                handler.close()

    def test_invalid_level_falls_back_to_info(self):
        setup_logging("chatty")
        self.assertEqual(self.logger.level, logging.INFO)
