#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
运维命令行测试
"""

import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

import main
from tests.fake_redis import FakeRedis


class MainCommandTest(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')
        self.redis = FakeRedis()

        env_patcher = patch.dict(os.environ, {'SECURITY_WHITELIST_IPS': '10.0.0.5'}, clear=True)
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

        client_patcher = patch('enforcement.monitor.create_redis_client', return_value=self.redis)
        client_patcher.start()
        self.addCleanup(client_patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def run_main(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out), redirect_stderr(io.StringIO()):
            code = main.main(list(argv))
        return code, out.getvalue()

    def test_init_and_show_config(self):
        code, _ = self.run_main('init-config', self.config_path)
        self.assertEqual(code, 0)
        self.assertTrue(os.path.exists(self.config_path))

        code, output = self.run_main('--config', self.config_path, 'show-config')
        self.assertEqual(code, 0)
        view = json.loads(output)
        self.assertEqual(view['thresholds']['failed_logins'], '5 attempts')
        self.assertIn('10.0.0.5', view['whitelist_ips'])

    def test_check_config(self):
        code, _ = self.run_main('check-config')
        self.assertEqual(code, 0)

    def test_invalid_configuration_refuses_to_start(self):
        os.environ['SECURITY_BLOCK_BRUTE_FORCE'] = '0'
        code, _ = self.run_main('check-config')
        self.assertEqual(code, 1)

    def test_missing_config_file(self):
        code, _ = self.run_main('--config', os.path.join(self.temp_dir, 'absent.yaml'), 'show-config')
        self.assertEqual(code, 1)

    def test_block_status_unblock(self):
        code, _ = self.run_main('block', '203.0.113.5', '--reason', 'sql_injection')
        self.assertEqual(code, 0)
        self.assertIn(('setex', 'security:blocked:sql_injection:203.0.113.5', 1440 * 60), self.redis.calls)

        code, output = self.run_main('status', '203.0.113.5')
        self.assertEqual(code, 0)
        status = json.loads(output)
        self.assertTrue(status['blocked'])
        self.assertEqual(status['block_records'][0]['reason'], 'sql_injection')

        code, _ = self.run_main('unblock', '203.0.113.5')
        self.assertEqual(code, 0)
        self.assertEqual(self.redis.data, {})

    def test_block_rejects_whitelisted_and_bad_duration(self):
        self.assertEqual(self.run_main('block', '10.0.0.5')[0], 1)
        self.assertEqual(self.run_main('block', '203.0.113.5', '--minutes', '0')[0], 1)
        self.assertEqual(self.run_main('block', '203.0.113.5', '--reason', 'custom')[0], 1)
        self.assertEqual(self.redis.calls, [])

    def test_block_with_custom_reason_and_duration(self):
        code, _ = self.run_main('block', '203.0.113.5', '--reason', 'manual', '--minutes', '15')
        self.assertEqual(code, 0)
        self.assertIn(('setex', 'security:blocked:manual:203.0.113.5', 900), self.redis.calls)

    def test_block_rejects_reason_with_separator(self):
        code, _ = self.run_main('block', '203.0.113.5', '--reason', 'manual:ops', '--minutes', '30')

        self.assertEqual(code, 1)
        self.assertEqual(self.redis.calls, [])

    def test_ping(self):
        self.assertEqual(self.run_main('ping')[0], 0)


if __name__ == '__main__':
    unittest.main()
