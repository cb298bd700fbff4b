#!/usr/bin/env python3
"""
Tests for the logging infrastructure.
"""

import os
import sys
import time
import logging
import logging.handlers
import tempfile
import shutil
import unittest

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_reconcile.logging_setup import LoggingManager, reset_logging, setup_logging


class TestLoggingSetup(unittest.TestCase):
    """Test cases for logging configuration."""

    def setUp(self):
        reset_logging()
        self.temp_dir = tempfile.mkdtemp(prefix='ldap_reconcile_test_')

    def tearDown(self):
        reset_logging()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def read_log(self):
        for handler in logging.getLogger().handlers:
            handler.flush()
        with open(os.path.join(self.temp_dir, 'app.log'), encoding='utf-8') as f:
            return f.read()

    def test_messages_written_to_file(self):
        setup_logging({'level': 'DEBUG', 'log_dir': self.temp_dir, 'console_output': False})
        logging.getLogger('ldap_reconcile.test').info("Reconciled 'cn=admins,dc=example,dc=com'")
        self.assertIn("Reconciled 'cn=admins,dc=example,dc=com'", self.read_log())

    def test_password_values_masked_in_file(self):
        setup_logging({'level': 'DEBUG', 'log_dir': self.temp_dir, 'console_output': False})
        logging.getLogger('ldap_reconcile.test').debug("Going to add attribute unicodePwd ['Secret1']")
        content = self.read_log()
        self.assertNotIn('Secret1', content)
        self.assertIn('unicodePwd [****]', content)

    def test_level_respected(self):
        setup_logging({'level': 'WARNING', 'log_dir': self.temp_dir, 'console_output': False})
        logging.getLogger('ldap_reconcile.test').info('hidden message')
        logging.getLogger('ldap_reconcile.test').warning('visible message')
        content = self.read_log()
        self.assertNotIn('hidden message', content)
        self.assertIn('visible message', content)

    def test_configured_once(self):
        setup_logging({'log_dir': self.temp_dir, 'console_output': True})
        handlers = list(logging.getLogger().handlers)
        setup_logging({'log_dir': self.temp_dir, 'console_output': False})
        self.assertEqual(logging.getLogger().handlers, handlers)
        self.assertEqual(len(handlers), 2)

    def test_file_rotates_at_midnight(self):
        setup_logging({'log_dir': self.temp_dir, 'retention_days': 3, 'console_output': False})
        handler = logging.getLogger().handlers[0]
        self.assertIsInstance(handler, logging.handlers.TimedRotatingFileHandler)
        self.assertEqual(handler.when, 'MIDNIGHT')
        self.assertEqual(handler.backupCount, 3)

    def test_old_rotated_logs_removed(self):
        old_log = os.path.join(self.temp_dir, 'app.log.2020-01-01')
        recent_log = os.path.join(self.temp_dir, 'app.log.recent')
        for path in (old_log, recent_log):
            with open(path, 'w') as f:
                f.write('old\n')
        ten_days_ago = time.time() - 10 * 24 * 3600
        os.utime(old_log, (ten_days_ago, ten_days_ago))

        manager = LoggingManager()
        manager.log_dir = self.temp_dir
        manager.retention_days = 7
        manager._cleanup_old_logs()

        self.assertFalse(os.path.exists(old_log))
        self.assertTrue(os.path.exists(recent_log))


if __name__ == '__main__':
    unittest.main()
