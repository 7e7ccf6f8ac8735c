"""
Unit tests for core/coinselect.py - size estimation and coin selection.
"""

import unittest

from preinscribe_lib.core.coinselect import (
    CoinInput, CoinOutput, estimate_vbytes, estimate_funding, input_vbytes, select,
    TAPROOT_SCRIPT_PATH_INPUT_VBYTES
)

CHANGE = CoinOutput(value=0, script_type='p2tr', address='change')


class TestSizeEstimation(unittest.TestCase):
    """Test vbyte estimates."""

    def test_empty_transaction(self):
        self.assertEqual(estimate_vbytes([], []), 10.5)

    def test_mixed_transaction(self):
        inputs = [CoinInput(value=1000, script_type='p2tr')]
        outputs = [CoinOutput(value=500, script_type='p2tr'), CoinOutput(value=400, script_type='p2wpkh')]
        self.assertEqual(estimate_vbytes(inputs, outputs), 10.5 + 57.5 + 43 + 31)

    def test_input_sizes(self):
        self.assertEqual(input_vbytes(CoinInput(0, 'p2tr')), 57.5)
        self.assertEqual(input_vbytes(CoinInput(0, 'p2tr', script_path=True)), 83)
        self.assertEqual(TAPROOT_SCRIPT_PATH_INPUT_VBYTES, 83)
        self.assertEqual(input_vbytes(CoinInput(0, 'p2wpkh')), 68)
        self.assertEqual(input_vbytes(CoinInput(0, 'p2sh')), 91)
        self.assertEqual(input_vbytes(CoinInput(0, 'p2pkh')), 148)

    def test_script_path_flag_ignored_for_non_taproot(self):
        self.assertEqual(input_vbytes(CoinInput(0, 'p2wpkh', script_path=True)), 68)


class TestEstimateFunding(unittest.TestCase):
    """Test missing-funding computation."""

    def test_unfunded_outputs(self):
        outputs = [CoinOutput(value=10_000, script_type='p2tr')]
        self.assertEqual(estimate_funding([], outputs, 2), 10_000 + 2 * 53.5)

    def test_partially_funded(self):
        inputs = [CoinInput(value=10_000, script_type='p2wpkh')]
        outputs = [CoinOutput(value=10_000, script_type='p2tr')]
        self.assertEqual(estimate_funding(inputs, outputs, 2), 243)

    def test_fractional_fee_rounds_up(self):
        outputs = [CoinOutput(value=10_000, script_type='p2tr')]
        # 1.5 * 53.5 = 80.25
        self.assertEqual(estimate_funding([], outputs, 1.5), 10_081)

    def test_overfunded_is_negative(self):
        inputs = [CoinInput(value=20_000, script_type='p2wpkh')]
        outputs = [CoinOutput(value=10_000, script_type='p2tr')]
        self.assertEqual(estimate_funding(inputs, outputs, 2), -9_757)


class TestSelect(unittest.TestCase):
    """Test blackjack / accumulative selection."""

    def setUp(self):
        self.outputs = [CoinOutput(value=10_000, script_type='p2tr', address='target')]

    def test_exact_match_without_change(self):
        utxos = [CoinInput(value=10_150, script_type='p2wpkh')]
        result = select(utxos, self.outputs, 1, CHANGE)

        self.assertEqual(len(result.inputs), 1)
        self.assertEqual(len(result.outputs), 1)
        self.assertEqual(result.fee, 150)

    def test_change_added_last(self):
        utxos = [CoinInput(value=50_000, script_type='p2wpkh')]
        result = select(utxos, self.outputs, 1, CHANGE)

        self.assertEqual(len(result.outputs), 2)
        self.assertEqual(result.outputs[0].address, 'target')
        self.assertEqual(result.outputs[1].address, 'change')
        # 50000 - 10000 - (10.5 + 68 + 43 + 43)
        self.assertEqual(result.outputs[1].value, 39_835)
        self.assertEqual(result.fee, 165)

    def test_largest_first(self):
        small = CoinInput(value=15_000, script_type='p2wpkh', ref='small')
        large = CoinInput(value=30_000, script_type='p2wpkh', ref='large')
        result = select([small, large], self.outputs, 1, CHANGE)

        self.assertEqual([c.ref for c in result.inputs], ['large'])

    def test_uneconomic_inputs_skipped(self):
        dust = CoinInput(value=500, script_type='p2wpkh', ref='dust')
        coin = CoinInput(value=20_000, script_type='p2wpkh', ref='coin')
        result = select([dust, coin], self.outputs, 10, CHANGE)

        self.assertEqual([c.ref for c in result.inputs], ['coin'])

    def test_multiple_inputs(self):
        utxos = [CoinInput(value=6_000, script_type='p2tr', ref=i) for i in range(3)]
        result = select(utxos, self.outputs, 1, CHANGE)

        self.assertEqual(len(result.inputs), 2)
        total_in = sum(c.value for c in result.inputs)
        total_out = sum(o.value for o in result.outputs)
        self.assertEqual(total_in - total_out, result.fee)
        self.assertGreaterEqual(result.fee, estimate_vbytes(result.inputs, result.outputs))

    def test_insufficient_funds(self):
        utxos = [CoinInput(value=5_000, script_type='p2wpkh')]
        result = select(utxos, self.outputs, 1, CHANGE)
        self.assertEqual(result.inputs, [])

    def test_no_candidates(self):
        self.assertEqual(select([], self.outputs, 1, CHANGE).inputs, [])


if __name__ == '__main__':
    unittest.main()
