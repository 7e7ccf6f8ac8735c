"""
Unit tests for backend/validator.py - seller PSBT validation with a mocked datasource.

Tests include:
- Valid listings resolve to their inscription
- Unknown / moved inscriptions
- Owner mismatch
- Malformed seller PSBTs
"""

import unittest
import asyncio

from preinscribe_lib.backend.validator import InscriptionValidator
from preinscribe_lib.core.errors import (
    InvalidSellerPst, InscriptionNotFound, InscriptionOwnershipMismatch, ValidationError
)
from preinscribe_lib.core.transaction_builder import copy_psbt, process_input
from tests.fixtures import (
    NETWORK, make_key, make_utxo, make_inscription, make_seller_listing, make_datasource,
    p2wpkh_address, OTHER_SECRET, SELLER_SECRET
)


class TestInscriptionValidator(unittest.TestCase):
    """Test seller PSBT validation."""

    def setUp(self):
        """Set up two listings, only the first one indexed."""
        self.listing = make_seller_listing('validator-1')
        self.unindexed = make_seller_listing('validator-2')
        self.datasource = make_datasource(inscriptions=[self.listing['inscription']])
        self.validator = InscriptionValidator(self.datasource, NETWORK)

    def test_valid_listing(self):
        """Test a listing signed by the indexed owner."""
        async def run_test():
            inscription = await self.validator.validate_psbt(self.listing['psbt'])
            self.assertEqual(inscription, self.listing['inscription'])
            self.datasource.get_inscriptions.assert_awaited_once_with(self.listing['utxo'].outpoint)

        asyncio.run(run_test())

    def test_inscription_not_found(self):
        """Test a listing whose outpoint holds no inscription (moved or never existed)."""
        async def run_test():
            with self.assertRaises(InscriptionNotFound):
                await self.validator.validate_psbt(self.unindexed['psbt'])

        asyncio.run(run_test())

    def test_owner_mismatch(self):
        """Test an inscription indexed under another owner."""
        async def run_test():
            other_owner = p2wpkh_address(make_key(OTHER_SECRET)['public_key'], NETWORK)
            datasource = make_datasource(
                inscriptions=[make_inscription(self.listing['utxo'], other_owner)]
            )
            validator = InscriptionValidator(datasource, NETWORK)

            with self.assertRaises(InscriptionOwnershipMismatch):
                await validator.validate_psbt(self.listing['psbt'])

        asyncio.run(run_test())

    def test_multiple_inputs_rejected(self):
        async def run_test():
            psbt = copy_psbt(self.listing['psbt'])
            seller_pubkey = make_key(SELLER_SECRET)['public_key']
            extra = make_utxo(self.listing['seller_address'], 1_000, 'extra-input')
            psbt.inputs.append(process_input(extra, seller_pubkey))

            with self.assertRaises(InvalidSellerPst):
                await self.validator.validate_psbt(psbt)
            self.datasource.get_inscriptions.assert_not_awaited()

        asyncio.run(run_test())

    def test_missing_witness_utxo(self):
        async def run_test():
            psbt = copy_psbt(self.listing['psbt'])
            psbt.inputs[0].witness_utxo = None

            with self.assertRaises(InvalidSellerPst):
                await self.validator.validate_psbt(psbt)

        asyncio.run(run_test())

    def test_validate_batch(self):
        """Test every PSBT is checked and results keep PSBT order."""
        async def run_test():
            second = make_seller_listing('validator-3')
            datasource = make_datasource(
                inscriptions=[second['inscription'], self.listing['inscription']]
            )
            validator = InscriptionValidator(datasource, NETWORK)

            result = await validator.validate([self.listing['psbt'], second['psbt']])
            self.assertEqual(result, [self.listing['inscription'], second['inscription']])
            self.assertEqual(datasource.get_inscriptions.await_count, 2)

        asyncio.run(run_test())

    def test_validate_batch_fails_on_any_invalid(self):
        async def run_test():
            with self.assertRaises(ValidationError):
                await self.validator.validate([self.listing['psbt'], self.unindexed['psbt']])

        asyncio.run(run_test())

    def test_validate_batch_cancels_pending_lookups(self):
        """Test a failed PSBT cancels lookups still waiting on the datasource."""
        async def run_test():
            never = asyncio.Event()
            cancelled = []

            async def get_inscriptions(outpoint):
                if outpoint != self.listing['utxo'].outpoint:
                    return []
                try:
                    await never.wait()
                except asyncio.CancelledError:
                    cancelled.append(outpoint)
                    raise

            self.datasource.get_inscriptions.side_effect = get_inscriptions

            with self.assertRaises(InscriptionNotFound):
                await self.validator.validate([self.listing['psbt'], self.unindexed['psbt']])
            await asyncio.sleep(0)

            self.assertEqual(cancelled, [self.listing['utxo'].outpoint])

        asyncio.run(run_test())


if __name__ == '__main__':
    unittest.main()
