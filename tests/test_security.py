#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
IP白名单测试
"""

import unittest

from utils.security import IPWhitelist


class IPWhitelistTest(unittest.TestCase):

    def setUp(self):
        self.whitelist = IPWhitelist(['127.0.0.1', '::1', '2001:db8::10', '192.168.0.0/24'])

    def test_equivalent_address_forms_match(self):
        self.assertTrue(self.whitelist.is_whitelisted('::1'))
        self.assertTrue(self.whitelist.is_whitelisted('0:0:0:0:0:0:0:1'))
        self.assertTrue(self.whitelist.is_whitelisted('2001:0db8:0000:0000:0000:0000:0000:0010'))
        self.assertTrue(self.whitelist.is_whitelisted(' 127.0.0.1 '))

    def test_networks(self):
        self.assertTrue(self.whitelist.is_whitelisted('192.168.0.200'))
        self.assertFalse(self.whitelist.is_whitelisted('192.168.1.1'))

    def test_non_addresses_are_not_whitelisted(self):
        self.assertFalse(self.whitelist.is_whitelisted(None))
        self.assertFalse(self.whitelist.is_whitelisted(''))
        self.assertFalse(self.whitelist.is_whitelisted('localhost'))
        self.assertNotIn('203.0.113.5', self.whitelist)

    def test_invalid_entry(self):
        with self.assertRaises(ValueError):
            IPWhitelist(['10.0.0.300'])

    def test_immutable(self):
        with self.assertRaises(AttributeError):
            self.whitelist._entries = frozenset()
        self.assertEqual(len(self.whitelist), 4)


if __name__ == '__main__':
    unittest.main()
