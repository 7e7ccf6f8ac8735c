"""
Unit tests for core/models.py - Data models.

Tests include:
- UTXO parsing from indexer and flat layouts
- Inscription / UnspentsResponse parsing
- Commitment payment derived fields
- BuildTransactionsResponse export
"""

import unittest

from preinscribe_lib.core.models import (
    UTXO, Inscription, UnspentsResponse, TxOutput, BuildTransactionsResponse, BuildSession
)
from tests.fixtures import make_key, make_utxo, p2tr_address, p2wpkh_address, BUYER_SECRET


class TestUTXO(unittest.TestCase):
    """Test UTXO dataclass."""

    def test_utxo_creation(self):
        """Test creating a UTXO infers the script type."""
        address = p2wpkh_address(make_key(BUYER_SECRET)['public_key'])
        utxo = make_utxo(address, 50_000, 'model', vout=1)

        self.assertEqual(utxo.vout, 1)
        self.assertEqual(utxo.value, 50_000)
        self.assertEqual(utxo.address_type, 'p2wpkh')
        self.assertEqual(utxo.outpoint, f"{utxo.txid}:1")

    def test_from_indexer_dict(self):
        """Test parsing the indexer's UTXO layout."""
        address = p2tr_address(make_key(BUYER_SECRET)['public_key'])
        reference = make_utxo(address, 1, 'ref')
        data = {
            'txid': 'aa' * 32,
            'n': 2,
            'sats': 12_345,
            'safeToSpend': True,
            'scriptPubKey': {
                'hex': reference.script_pubkey,
                'address': address,
                'type': 'witness_v1_taproot',
            },
        }
        utxo = UTXO.from_dict(data)

        self.assertEqual(utxo.txid, 'aa' * 32)
        self.assertEqual(utxo.vout, 2)
        self.assertEqual(utxo.value, 12_345)
        self.assertEqual(utxo.address, address)
        self.assertEqual(utxo.address_type, 'p2tr')
        self.assertTrue(utxo.safe_to_spend)

    def test_from_flat_dict(self):
        """Test to_dict() output parses back."""
        address = p2wpkh_address(make_key(BUYER_SECRET)['public_key'])
        utxo = make_utxo(address, 7_000, 'flat', vout=4)

        parsed = UTXO.from_dict(utxo.to_dict())
        self.assertEqual(parsed, utxo)

    def test_unknown_indexer_type_falls_back_to_script(self):
        address = p2wpkh_address(make_key(BUYER_SECRET)['public_key'])
        reference = make_utxo(address, 1, 'ref')
        utxo = UTXO.from_dict({
            'txid': 'bb' * 32, 'vout': 0, 'value': 1_000,
            'scriptPubKey': {'hex': reference.script_pubkey, 'type': 'nonstandard'},
        })
        self.assertEqual(utxo.address_type, 'p2wpkh')

    def test_utxo_str(self):
        utxo = UTXO(txid='cc' * 32, vout=0, value=150_000_000, script_pubkey='')
        self.assertIn('1.50000000 BTC', str(utxo))
        self.assertIn('150,000,000 sats', str(utxo))


class TestIndexerRecords(unittest.TestCase):
    """Test Inscription and UnspentsResponse parsing."""

    def test_inscription_from_dict(self):
        inscription = Inscription.from_dict({
            'id': 'dd' * 32 + 'i0',
            'outpoint': 'dd' * 32 + ':0',
            'owner': 'bcrt1qowner',
            'mediaType': 'text/plain',
            'number': 42,
        })
        self.assertEqual(inscription.media_type, 'text/plain')
        self.assertEqual(inscription.number, 42)
        self.assertIsNone(inscription.height)

    def test_unspents_response_from_dict(self):
        entry = {'txid': 'ee' * 32, 'vout': 0, 'value': 1_000, 'script_pubkey': ''}
        response = UnspentsResponse.from_dict({
            'spendableUTXOs': [entry],
            'unspendableUTXOs': [dict(entry, vout=1)],
        })
        self.assertEqual(len(response.spendable_utxos), 1)
        self.assertEqual(response.unspendable_utxos[0].vout, 1)
        self.assertEqual(response.total_count, 2)

    def test_tx_output_str(self):
        self.assertEqual(str(TxOutput('bcrt1qdest', 12_000)), 'bcrt1qdest: 12,000 sats')


class TestBuildTransactionsResponse(unittest.TestCase):
    """Test the final response object."""

    def test_effective_fee_rate(self):
        response = BuildTransactionsResponse('a', ['b'], 'c', total_vbytes=1056.5, total_fee=8452)
        self.assertEqual(response.effective_fee_rate, 8.0)

    def test_effective_fee_rate_without_size(self):
        self.assertEqual(BuildTransactionsResponse('a', [], 'c').effective_fee_rate, 0.0)

    def test_to_dict(self):
        response = BuildTransactionsResponse(
            'first', ['second-1', 'second-2'], 'third',
            cpfp_funding=7_030, iterations=2, total_vbytes=100.0, total_fee=500,
            first_transaction_psbt_hex='00'
        )
        data = response.to_dict()

        self.assertEqual(data['firstTransactionPSBTB64'], 'first')
        self.assertEqual(data['secondTransactionPSBTB64s'], ['second-1', 'second-2'])
        self.assertEqual(data['thirdTransactionPSBTB64'], 'third')
        self.assertEqual(data['firstTransactionPSBTHex'], '00')
        self.assertEqual(data['cpfp_funding'], 7_030)
        self.assertEqual(data['effective_fee_rate'], 5.0)

    def test_session_defaults_are_independent(self):
        a, b = BuildSession(), BuildSession()
        a.buyer_utxos.append('utxo')
        self.assertEqual(b.buyer_utxos, [])
        self.assertIsNone(a.first_txid)


if __name__ == '__main__':
    unittest.main()
