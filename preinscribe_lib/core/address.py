"""
Address classification and taproot commitment address derivation.

This module contains functions for:
- Classifying addresses by script type for a given network
- Deriving two-leaf taproot commitment addresses (redeem leaf + envelope leaf)
- Deriving the buyer's ephemeral commitment address
- Deriving the deterministic escrow address bound to an inscription outpoint

Uses coincurve for the taproot tweak and embit for address encoding.
"""

import logging
from typing import List

from embit import bech32
from embit.script import Script, address_to_scriptpubkey

from .constants import get_network_config
from .crypto import to_xonly, tapleaf_hash, tapbranch_hash, taproot_tweak_pubkey
from .envelope import Envelope, build_envelope_script, build_redeem_script
from .errors import InputError, AddressConstructionError
from .models import CommitmentPayment, EscrowAddress

logger = logging.getLogger('preinscribe.address')


def address_to_script(address: str, network: str = 'mainnet', chain: str = 'bitcoin') -> Script:
    """
    Decode an address into its scriptPubKey, checking it belongs to the network.

    Args:
        address: Bitcoin address (base58 or bech32/bech32m)
        network: Network name
        chain: Chain name

    Returns:
        embit Script

    Raises:
        InputError: If the address cannot be decoded or belongs to another network
    """
    net = get_network_config(network, chain)
    decodable = address
    if address.lower().startswith(net['bech32'] + '1'):
        if address not in (address.lower(), address.upper()):
            raise InputError(f"Mixed-case bech32 address {address}")
        decodable = address.lower()
    try:
        script_pubkey = address_to_scriptpubkey(decodable)
        encoded = script_pubkey.address(net)
    except Exception as e:
        raise InputError(f"Failed to decode address {address}: {e}") from e

    # bech32 addresses are case-insensitive
    if encoded != address and encoded.lower() != address.lower():
        raise InputError(f"Address {address} does not belong to network {network}")

    return script_pubkey


def get_address_type(address: str, network: str = 'mainnet', chain: str = 'bitcoin') -> str:
    """
    Classify an address by script type.

    Returns:
        One of 'p2pkh', 'p2sh', 'p2wpkh', 'p2wsh', 'p2tr'
    """
    script_type = address_to_script(address, network, chain).script_type()
    if script_type is None:
        raise InputError(f"Unknown address type for {address}")
    return script_type


def script_to_address(script_pubkey: Script, network: str = 'mainnet', chain: str = 'bitcoin') -> str:
    """Encode a scriptPubKey as an address, or '' if it has no address form."""
    try:
        return script_pubkey.address(get_network_config(network, chain))
    except ValueError:
        return ''


def build_commitment_address(
    public_key: str,
    envelopes: List[Envelope],
    network: str = 'mainnet',
    chain: str = 'bitcoin'
) -> CommitmentPayment:
    """
    Derive a taproot address committing to a redeem leaf and an envelope leaf.

    The key's x-only form is used as internal key, as the key of the
    single-signature redeem leaf and as the guard key of the envelope leaf.

    Args:
        public_key: Public key hex (compressed or x-only)
        envelopes: Envelopes embedded in the data leaf
        network: Network name
        chain: Chain name

    Returns:
        CommitmentPayment with address and merkle root

    Raises:
        AddressConstructionError: If no address can be derived (malformed key,
            unknown network)
    """
    try:
        net = get_network_config(network, chain)
        xonly_key = to_xonly(public_key)
    except InputError as e:
        raise AddressConstructionError(f"Error while creating commitment address: {e}") from e

    redeem_script = build_redeem_script(xonly_key)
    data_script = build_envelope_script(xonly_key, envelopes)

    merkle_root = tapbranch_hash(tapleaf_hash(redeem_script), tapleaf_hash(data_script))
    output_key, parity = taproot_tweak_pubkey(xonly_key, merkle_root)

    address = bech32.encode(net['bech32'], 1, output_key)
    if not address:
        raise AddressConstructionError("Error while creating commitment address")

    return CommitmentPayment(
        address=address,
        script_pubkey=b'\x51\x20' + output_key,
        internal_key=xonly_key,
        output_key=output_key,
        parity=parity,
        merkle_root=merkle_root,
        redeem_script=redeem_script,
        data_script=data_script
    )


def get_buyer_commitment_address(
    buyer_public_key: str,
    buyer_address: str,
    unique_id: str,
    network: str = 'mainnet',
    chain: str = 'bitcoin'
) -> CommitmentPayment:
    """
    Derive the buyer's commitment address for one trade.

    The same unique_id always yields the same address; different ids yield
    unrelated addresses, so the address cannot be linked to the buyer until
    it is spent.
    """
    envelope = Envelope.from_json({
        'buyerPublicKey': buyer_public_key,
        'buyerAddress': buyer_address,
        'uniqueId': unique_id,
    })
    payment = build_commitment_address(buyer_public_key, [envelope], network, chain)
    logger.debug(f"Buyer commitment address for {unique_id!r}: {payment.address}")
    return payment


def get_escrow_payment(
    inscription_outpoint: str,
    escrow_public_key: str,
    network: str = 'mainnet',
    chain: str = 'bitcoin'
) -> CommitmentPayment:
    """Full commitment data of the escrow address bound to an inscription outpoint."""
    envelope = Envelope.from_json({'inscriptionOutpoint': inscription_outpoint})
    return build_commitment_address(escrow_public_key, [envelope], network, chain)


def get_escrow_address(
    inscription_outpoint: str,
    escrow_public_key: str,
    network: str = 'mainnet',
    chain: str = 'bitcoin'
) -> EscrowAddress:
    """
    Derive the escrow address for an inscription outpoint.

    Pure and deterministic: any party can recompute it to verify where an
    inscription is being sent.

    Args:
        inscription_outpoint: "txid:vout" of the inscription before the sale
        escrow_public_key: Escrow public key hex
        network: Network name
        chain: Chain name

    Returns:
        EscrowAddress with address and merkle proof hex
    """
    payment = get_escrow_payment(inscription_outpoint, escrow_public_key, network, chain)
    return EscrowAddress(address=payment.address, merkle_proof_hex=payment.merkle_proof_hex)
