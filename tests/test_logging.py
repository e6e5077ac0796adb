#!/usr/bin/env python3
"""
Unit tests for logging setup and sensitive data filtering.
"""

import os
import sys
import logging
import shutil
import tempfile
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ad_sync.logging_setup import LoggingManager, SensitiveDataFilter, LOG_FILE_NAME


def _record(msg, args=None):
    return logging.LogRecord('ad_sync.test', logging.INFO, __file__, 1, msg, args, None)


class TestSensitiveDataFilter(unittest.TestCase):
    """Test cases for SensitiveDataFilter."""

    def setUp(self):
        self.filter = SensitiveDataFilter()

    def assertScrubbed(self, message, expected, args=None):
        record = _record(message, args)
        self.assertTrue(self.filter.filter(record))
        self.assertEqual(record.getMessage(), expected)

    def test_key_value_pairs(self):
        self.assertScrubbed('password=secret123', 'password=****')
        self.assertScrubbed('Binding with bind_password=topsecret, retrying',
                            'Binding with bind_password=****, retrying')

    def test_json_and_dict_values(self):
        self.assertScrubbed('{"bind_password": "topsecret"}', '{"bind_password": "****"}')
        self.assertScrubbed("{'unixUserPassword': 'crypt'}", "{'unixUserPassword': '****'}")

    def test_arguments_are_scrubbed(self):
        """Secrets passed as format arguments do not survive interpolation."""
        self.assertScrubbed('Setting %s', 'Setting unicodePwd=****', args=('unicodePwd=Secret1!',))

    def test_authorization_header(self):
        self.assertScrubbed('Authorization: Bearer abc123token', 'Authorization: Bearer ****')

    def test_plain_message_untouched(self):
        self.assertScrubbed('Created user alice', 'Created user alice')


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.log_dir = os.path.join(self.temp_dir, 'logs')
        root_logger = logging.getLogger()
        self.saved_handlers = root_logger.handlers[:]
        self.saved_level = root_logger.level

    def tearDown(self):
        root_logger = logging.getLogger()
        for handler in root_logger.handlers:
            if handler not in self.saved_handlers:
                handler.close()
        root_logger.handlers[:] = self.saved_handlers
        root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_setup_creates_log_file(self):
        manager = LoggingManager()
        manager.setup_logging({'level': 'DEBUG', 'log_dir': self.log_dir, 'console_output': False})

        logging.getLogger('ad_sync.test').info('hello bind_password=hunter2 done')
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)
        self.assertTrue(os.path.exists(log_file))
        with open(log_file, encoding='utf-8') as f:
            content = f.read()
        self.assertIn('hello bind_password=****', content)
        self.assertNotIn('hunter2', content)

        stats = manager.get_log_stats()
        self.assertTrue(stats['configured'])
        self.assertEqual(stats['log_files_count'], 1)
        self.assertEqual(logging.getLogger('ldap3').level, logging.WARNING)

    def test_setup_only_once(self):
        manager = LoggingManager()
        manager.setup_logging({'log_dir': self.log_dir, 'console_output': False})
        handlers = logging.getLogger().handlers[:]

        manager.setup_logging({'log_dir': self.log_dir, 'console_output': True})

        self.assertEqual(logging.getLogger().handlers, handlers)

    def test_old_rotated_logs_removed(self):
        os.makedirs(self.log_dir)
        old_log = os.path.join(self.log_dir, f'{LOG_FILE_NAME}.2020-01-01')
        with open(old_log, 'w') as f:
            f.write('old')
        os.utime(old_log, (0, 0))

        manager = LoggingManager()
        manager.setup_logging({'log_dir': self.log_dir, 'retention_days': 7, 'console_output': False})

        self.assertFalse(os.path.exists(old_log))


if __name__ == '__main__':
    unittest.main()
