"""
Test fixtures and helper functions shared across the test suite.

Provides deterministic keys and addresses, UTXO / inscription builders,
seller-signed PSBT builders and an AsyncMock datasource.
"""

import hashlib
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, Mock

from coincurve import PrivateKey
from embit import ec, script

from preinscribe_lib.backend.datasource import BaseDatasource
from preinscribe_lib.core.constants import get_network_config
from preinscribe_lib.core.models import UTXO, Inscription, UnspentsResponse
from preinscribe_lib.core.transaction_builder import build_inscription_psbt, serialize_psbt

NETWORK = 'regtest'

BUYER_SECRET = 0x11
SELLER_SECRET = 0x22
ESCROW_SECRET = 0x33
RECEIVER_SECRET = 0x44
OTHER_SECRET = 0x55


def make_key(secret: int) -> Dict[str, str]:
    """
    Deterministic key pair from a small integer secret.

    Returns:
        Dictionary with private_key (64 hex) and public_key (66 hex, compressed)
    """
    privkey = PrivateKey(secret.to_bytes(32, 'big'))
    return {
        'private_key': privkey.secret.hex(),
        'public_key': privkey.public_key.format(compressed=True).hex(),
    }


def _embit_pubkey(public_key: str) -> ec.PublicKey:
    return ec.PublicKey.parse(bytes.fromhex(public_key))


def p2tr_address(public_key: str, network: str = NETWORK) -> str:
    """Key-path-only taproot address of a key."""
    return script.p2tr(_embit_pubkey(public_key)).address(get_network_config(network))


def p2wpkh_address(public_key: str, network: str = NETWORK) -> str:
    return script.p2wpkh(_embit_pubkey(public_key)).address(get_network_config(network))


def p2sh_p2wpkh_address(public_key: str, network: str = NETWORK) -> str:
    nested = script.p2wpkh(_embit_pubkey(public_key))
    return script.p2sh(nested).address(get_network_config(network))


def p2pkh_address(public_key: str, network: str = NETWORK) -> str:
    return script.p2pkh(_embit_pubkey(public_key)).address(get_network_config(network))


def fake_txid(seed: str) -> str:
    """Deterministic 32-byte txid (hex) derived from a label."""
    return hashlib.sha256(seed.encode()).hexdigest()


def make_utxo(address: str, value: int, seed: str, vout: int = 0) -> UTXO:
    """UTXO paying `address`, with a txid derived from `seed`."""
    script_pubkey = script.address_to_scriptpubkey(address)
    return UTXO(
        txid=fake_txid(seed),
        vout=vout,
        value=value,
        script_pubkey=script_pubkey.data.hex(),
        address=address
    )


def make_inscription(utxo: UTXO, owner: str, index: int = 0) -> Inscription:
    return Inscription(
        id=f"{utxo.txid}i{index}",
        outpoint=utxo.outpoint,
        owner=owner,
        media_type='image/png'
    )


def make_seller_listing(
    seed: str,
    price: int = 10_000,
    inscription_value: int = 546,
    escrow_public_key: Optional[str] = None,
    network: str = NETWORK
) -> Dict[str, object]:
    """
    Build a seller's inscription PSBT the way a seller would list it.

    Returns:
        Dictionary with utxo, inscription, psbt (embit PSBT) and base64
    """
    seller = make_key(SELLER_SECRET)
    seller_address = p2wpkh_address(seller['public_key'], network)
    escrow_public_key = escrow_public_key or make_key(ESCROW_SECRET)['public_key']

    utxo = make_utxo(seller_address, inscription_value, seed)
    psbt = build_inscription_psbt(
        utxo, seller['public_key'], seller_address, price, escrow_public_key, network
    )
    return {
        'utxo': utxo,
        'inscription': make_inscription(utxo, seller_address),
        'psbt': psbt,
        'base64': serialize_psbt(psbt).base64,
        'seller_address': seller_address,
    }


def make_datasource(
    buyer_utxos: Optional[List[UTXO]] = None,
    inscriptions: Optional[List[Inscription]] = None,
    inscription_utxos: Optional[Dict[str, UTXO]] = None
) -> MagicMock:
    """
    Datasource mock backed by in-memory data.

    Args:
        buyer_utxos: Spendable UTXOs returned by get_unspents()
        inscriptions: Inscriptions returned by get_inscriptions(), matched by outpoint
        inscription_utxos: inscription id -> UTXO for get_inscription_utxo()
    """
    inscriptions = inscriptions or []
    inscription_utxos = inscription_utxos or {}

    datasource = MagicMock(spec=BaseDatasource)
    datasource.get_unspents = AsyncMock(
        return_value=UnspentsResponse(spendable_utxos=list(buyer_utxos or []))
    )
    datasource.get_inscriptions = AsyncMock(
        side_effect=lambda outpoint: [i for i in inscriptions if i.outpoint == outpoint]
    )
    datasource.get_inscription_utxo = AsyncMock(
        side_effect=lambda inscription_id: inscription_utxos.get(inscription_id)
    )
    datasource.default_rarity = Mock(return_value=['common', 'uncommon'])
    return datasource
