# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from arc_provisioning._errors import ValidationError
from arc_provisioning._target import ConnectTarget
from arc_provisioning._target import parse_connect_target


class TestConnectTarget(unittest.TestCase):

    def test_default_port(self):
        self.assertEqual(
            parse_connect_target('admin@203.0.113.7'),
            ConnectTarget('admin', '203.0.113.7', '203.0.113.7:22'))

    def test_port(self):
        self.assertEqual(
            parse_connect_target(' admin@example.com:2222 '),
            ConnectTarget('admin', 'example.com', 'example.com:2222'))

    def test_ipv6(self):
        self.assertEqual(
            parse_connect_target('root@[2001:db8::7]:2200'),
            ConnectTarget('root', '2001:db8::7', '[2001:db8::7]:2200'))
        self.assertEqual(
            parse_connect_target('root@[2001:db8::7]'),
            ConnectTarget('root', '2001:db8::7', '[2001:db8::7]:22'))
        self.assertEqual(
            parse_connect_target('root@2001:db8::7'),
            ConnectTarget('root', '2001:db8::7', '[2001:db8::7]:22'))

    def test_invalid(self):
        for text in [
                '',
                'example.com',
                '@example.com',
                'admin@',
                'admin@ ',
                'admin@example.com:',
                'admin@example.com:ssh',
                'admin@example.com:0',
                'admin@example.com:65536',
                'admin@[2001:db8::7',
                'admin@[2001:db8::7]2200',
                'admin@[]:22',
                ]:
            with self.subTest(text=text):
                self.assertRaises(ValidationError, parse_connect_target, text)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s %(levelname)s %(message)s')
    unittest.main()
