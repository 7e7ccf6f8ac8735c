"""
Seller PSBT validation against the inscription index.

Each seller PSBT must spend exactly one input, the outpoint currently
holding the inscription, from the address the index reports as its owner.
A PSBT built for an inscription that has since moved fails here instead of
producing a purchase that can never confirm.
"""

import asyncio
import logging
from typing import List

from embit.psbt import PSBT

from ..core.errors import InvalidSellerPst, InscriptionNotFound, InscriptionOwnershipMismatch
from ..core.models import Inscription
from ..core.transaction_builder import outpoint_of_input, seller_address_of
from .datasource import BaseDatasource

logger = logging.getLogger('preinscribe.validator')


class InscriptionValidator:
    """Checks seller-signed inscription PSBTs against the datasource."""

    def __init__(self, datasource: BaseDatasource, network: str = 'mainnet', chain: str = 'bitcoin'):
        self.datasource = datasource
        self.network = network
        self.chain = chain

    async def validate_psbt(self, psbt: PSBT) -> Inscription:
        """
        Validate one seller PSBT.

        Args:
            psbt: Seller-signed inscription PSBT

        Returns:
            The inscription record matching the PSBT's input

        Raises:
            InvalidSellerPst: If the PSBT does not have exactly one input with a witness UTXO
            InscriptionNotFound: If no inscription is indexed at the input's outpoint
            InscriptionOwnershipMismatch: If the indexed owner is not the input's address
        """
        if len(psbt.inputs) != 1:
            raise InvalidSellerPst(f"invalid seller psbt: expected 1 input, got {len(psbt.inputs)}")

        outpoint = outpoint_of_input(psbt, 0)
        seller_address = seller_address_of(psbt, self.network, self.chain)

        inscriptions = await self.datasource.get_inscriptions(outpoint)
        if not inscriptions:
            raise InscriptionNotFound(f"Inscription not found at {outpoint}")

        for inscription in inscriptions:
            if inscription.outpoint == outpoint and inscription.owner == seller_address:
                logger.debug(f"Inscription {inscription.id} at {outpoint} owned by {seller_address}")
                return inscription

        raise InscriptionOwnershipMismatch(
            f"Inscription at {outpoint} does not belong to seller {seller_address}"
        )

    async def validate(self, psbts: List[PSBT]) -> List[Inscription]:
        """
        Validate all seller PSBTs concurrently. The first failure aborts the
        batch and cancels the lookups still in flight.

        Returns:
            Inscription records in PSBT order
        """
        tasks = [asyncio.ensure_future(self.validate_psbt(p)) for p in psbts]
        try:
            inscriptions = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        logger.info(f"Validated {len(inscriptions)} seller PSBT(s)")
        return list(inscriptions)
