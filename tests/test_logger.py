#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
日志记录工具测试
"""

import json
import logging
import os
import shutil
import tempfile
import threading
import unittest

from utils.logger import (
    LoggerConfigError,
    SecurityEventLogger,
    level_for_event,
    setup_logger,
    setup_logger_from_config,
)


class LevelMappingTest(unittest.TestCase):

    def test_static_mapping(self):
        self.assertEqual(level_for_event('critical_threat_blocked'), 'fatal')
        self.assertEqual(level_for_event('critical_threat'), 'fatal')
        self.assertEqual(level_for_event('brute_force_blocked'), 'error')
        self.assertEqual(level_for_event('brute_force_detected'), 'error')
        self.assertEqual(level_for_event('high_threat_blocked'), 'error')
        self.assertEqual(level_for_event('failed_login'), 'warn')
        self.assertEqual(level_for_event('suspicious_activity'), 'warn')
        self.assertEqual(level_for_event('medium_threat'), 'warn')
        self.assertEqual(level_for_event('successful_login'), 'info')
        self.assertEqual(level_for_event('anything_else'), 'info')


class SecurityEventLoggerTest(unittest.TestCase):

    def setUp(self):
        self.event_logger = SecurityEventLogger(logging.getLogger('tests.security.events'))

    def test_record_shape(self):
        with self.assertLogs('tests.security.events', level='DEBUG') as logs:
            record = self.event_logger.log_event('brute_force_blocked', {
                'ip_address': '203.0.113.5',
                'email': 'admin@example.com',
            })

        self.assertEqual(record['event'], 'security_brute_force_blocked')
        self.assertEqual(record['ip_address'], '203.0.113.5')
        self.assertIn('timestamp', record)

        self.assertEqual(logs.records[0].levelno, logging.ERROR)
        self.assertEqual(json.loads(logs.records[0].getMessage()), record)

    def test_explicit_level(self):
        with self.assertLogs('tests.security.events', level='DEBUG') as logs:
            self.event_logger.log_event('successful_login', {}, level='warn')
        self.assertEqual(logs.records[0].levelno, logging.WARNING)

    def test_sensitive_data_is_cleaned(self):
        record = self.event_logger.build_record('security_failed_login', {
            'Password': 'hunter2',
            'api_key': 'abc',
            'path': '/' + 'a' * 2000,
        })

        self.assertEqual(record['Password'], '[REDACTED]')
        self.assertEqual(record['api_key'], '[REDACTED]')
        self.assertTrue(record['path'].endswith('[TRUNCATED]'))
        self.assertEqual(len(record['path']), 1000 + len('[TRUNCATED]'))

    def test_non_json_values_are_serialized(self):
        with self.assertLogs('tests.security.events', level='DEBUG') as logs:
            self.event_logger.log_event('suspicious_activity', {'threats': frozenset({'sql_injection'})})

        self.assertEqual(json.loads(logs.records[0].getMessage())['threats'], ['sql_injection'])

    def test_statistics(self):
        self.event_logger.log_event('failed_login', {})
        self.event_logger.log_event('failed_login', {})
        self.event_logger.log_event('brute_force_blocked', {})

        self.assertEqual(self.event_logger.get_statistics(), {'failed_login': 2, 'brute_force_blocked': 1})

    def test_statistics_across_threads(self):
        quiet_logger = SecurityEventLogger(logging.getLogger('tests.security.quiet'))
        quiet_logger.logger.disabled = True
        self.addCleanup(setattr, quiet_logger.logger, 'disabled', False)

        def worker():
            for _ in range(250):
                quiet_logger.log_event('suspicious_activity', {})

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(quiet_logger.get_statistics(), {'suspicious_activity': 2000})


class SetupLoggerTest(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        for name in ('tests.setup.file', 'tests.setup.config'):
            logger = logging.getLogger(name)
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
        shutil.rmtree(self.temp_dir)

    def test_file_logging(self):
        log_file = os.path.join(self.temp_dir, 'logs', 'security.log')
        logger = setup_logger('tests.setup.file', level='DEBUG', log_file=log_file, console_output=False)
        logger.info('hello')

        for handler in logger.handlers:
            handler.flush()
        with open(log_file, encoding='utf-8') as f:
            self.assertIn('hello', f.read())

    def test_invalid_arguments(self):
        with self.assertRaises(LoggerConfigError):
            setup_logger('')
        with self.assertRaises(LoggerConfigError):
            setup_logger('tests.setup.invalid', level='LOUD')
        with self.assertRaises(LoggerConfigError):
            setup_logger('tests.setup.invalid', max_bytes=0)

    def test_from_config(self):
        logger = setup_logger_from_config('tests.setup.config', {
            'level': 'WARNING',
            'max_size': '1MB',
            'console': True,
        })
        self.assertEqual(logger.level, logging.WARNING)

        with self.assertRaises(LoggerConfigError):
            setup_logger_from_config('tests.setup.config', {'max_size': 'huge'})
        with self.assertRaises(LoggerConfigError):
            setup_logger_from_config('tests.setup.config', {'console': 'yes'})


if __name__ == '__main__':
    unittest.main()
