"""
Unit tests for utils.py - formatting and parsing helpers.
"""

import unittest

from preinscribe_lib.utils import format_btc, parse_outpoint, format_fee_rate
from preinscribe_lib.core.errors import InputError

TXID = 'ab' * 32


class TestUtils(unittest.TestCase):
    """Test helper functions."""

    def test_format_btc(self):
        self.assertEqual(format_btc(123_456), '0.00123456 BTC')
        self.assertEqual(format_btc(0), '0.00000000 BTC')

    def test_parse_outpoint(self):
        self.assertEqual(parse_outpoint(f"{TXID}:3"), (TXID, 3))

    def test_parse_outpoint_invalid(self):
        for bad in ('', TXID, f"{TXID}:", f"{TXID}:1:2", f"{TXID[:-2]}:0", f"{TXID}:-1", None):
            with self.subTest(outpoint=bad):
                with self.assertRaises(InputError):
                    parse_outpoint(bad)

    def test_format_fee_rate(self):
        self.assertEqual(format_fee_rate(8452, 1056.5), 8.0)
        self.assertEqual(format_fee_rate(1000, 3), 333.33)
        self.assertEqual(format_fee_rate(1000, 0), 0.0)


if __name__ == '__main__':
    unittest.main()
