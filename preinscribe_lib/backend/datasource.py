"""
Data source interface consumed by the transaction-chain builder.

The builder never talks to the network directly: UTXO and inscription
lookups go through a BaseDatasource implementation (JsonRpcDatasource for a
live indexer, AsyncMock in tests).
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.constants import DEFAULT_RARITY
from ..core.models import UTXO, Inscription, UnspentsResponse


class BaseDatasource(ABC):
    """Async lookups against an ordinals-aware UTXO index."""

    @abstractmethod
    async def get_unspents(
        self,
        address: str,
        rarity: Optional[List[str]] = None,
        type: str = 'spendable',
        sort: str = 'desc'
    ) -> UnspentsResponse:
        """
        Get the UTXOs of an address.

        Args:
            address: Address to query
            rarity: Sat rarities allowed in spendable UTXOs
            type: 'spendable' or 'all'
            sort: Value ordering, 'asc' or 'desc'

        Returns:
            UnspentsResponse
        """

    @abstractmethod
    async def get_inscriptions(self, outpoint: str) -> List[Inscription]:
        """Get the inscriptions located at an outpoint ("txid:vout")."""

    @abstractmethod
    async def get_inscription_utxo(self, inscription_id: str) -> Optional[UTXO]:
        """Get the UTXO currently holding an inscription, or None if unknown."""

    @staticmethod
    def default_rarity() -> List[str]:
        return list(DEFAULT_RARITY)
