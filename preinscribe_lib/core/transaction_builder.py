"""
PSBT building functions for the protected purchase chain.

This module contains pure functions for:
- Decoding / serializing PSBTs (hex and base64)
- Computing unsigned transaction ids (nested segwit aware)
- Turning buyer / seller UTXOs into PSBT inputs
- Chaining an output of one PSBT as an input of the next
- Building the first (funding), second (purchase) and third (withdraw) PSBTs
- Building the seller's inscription PSBT
- Measuring size, paid fees and missing funding of a PSBT

Nothing here signs: every PSBT is handed to external signers.
Uses embit library for Bitcoin transaction primitives.
"""

import logging
from typing import List, Optional, Tuple

from embit import ec
from embit.psbt import PSBT, InputScope, OutputScope
from embit.script import Script
from embit.transaction import Transaction, TransactionInput, TransactionOutput, SIGHASH

from .address import address_to_script, get_escrow_payment, get_address_type, script_to_address
from .coinselect import CoinInput, CoinOutput, estimate_vbytes, estimate_funding, select
from .constants import RBF_SEQUENCE, DUMMY_INPUT_VALUE, TAPSCRIPT_LEAF_VERSION
from .crypto import to_xonly, compressed_pubkey, hash160
from .envelope import push_data
from .errors import (
    InputError, InvalidSellerPst, InsufficientFunds, NoOutputSelected, UnsupportedScriptType
)
from .models import (
    UTXO, TxOutput, SerializedPSBT, CommitmentPayment, BuildSession,
    TaprootInputDescriptor, SegwitV0InputDescriptor, InputDescriptor
)

logger = logging.getLogger('preinscribe.transaction_builder')

SELLER_SIGHASH = SIGHASH.ALL | SIGHASH.ANYONECANPAY


def decode_psbt(data: str) -> PSBT:
    """
    Decode a PSBT from hex or base64.

    Raises:
        InputError: If the data is not a valid PSBT
    """
    try:
        return PSBT.from_string(data.strip())
    except Exception as e:
        raise InputError(f"Invalid PSBT: {e}") from e


def copy_psbt(psbt: PSBT) -> PSBT:
    """Independent copy of a PSBT."""
    return PSBT.parse(psbt.serialize())


def serialize_psbt(psbt: PSBT) -> SerializedPSBT:
    """Serialize a PSBT to its portable encodings."""
    return SerializedPSBT(hex=psbt.serialize().hex(), base64=psbt.to_base64())


def unsigned_txid(psbt: PSBT) -> str:
    """
    Transaction id of a PSBT before any signature is attached.

    Nested segwit inputs carry their redeem script in the scriptSig, which
    is part of the txid, so it is filled in from the PSBT before hashing.
    Native segwit and taproot inputs leave the txid signature independent.

    Returns:
        Transaction id in hex (display byte order)
    """
    tx = psbt.tx
    for vin, inp in zip(tx.vin, psbt.inputs):
        if inp.final_scriptsig is not None:
            vin.script_sig = inp.final_scriptsig
        elif inp.redeem_script is not None:
            vin.script_sig = Script(push_data(inp.redeem_script.data))
    return tx.txid().hex()


def outpoint_of_input(psbt: PSBT, index: int = 0) -> str:
    """Previous outpoint ("txid:vout") spent by an input."""
    inp = psbt.inputs[index]
    return f"{inp.txid.hex()}:{inp.vout}"


def process_input(utxo: UTXO, public_key: str, sighash_type: Optional[int] = None) -> InputScope:
    """
    Build a PSBT input spending a UTXO controlled by a single key.

    Args:
        utxo: UTXO to spend (address_type decides the spend data)
        public_key: Public key hex of the owner
        sighash_type: Optional sighash type to request from the signer

    Returns:
        InputScope with witness UTXO and key / redeem data

    Raises:
        UnsupportedScriptType: If the UTXO is not p2tr, p2wpkh or nested p2wpkh
    """
    script_pubkey = Script(bytes.fromhex(utxo.script_pubkey))
    inp = InputScope(
        unknown={},
        vin=TransactionInput(bytes.fromhex(utxo.txid), utxo.vout, sequence=RBF_SEQUENCE)
    )
    inp.witness_utxo = TransactionOutput(utxo.value, script_pubkey)

    if utxo.address_type == 'p2tr':
        inp.taproot_internal_key = ec.PublicKey.from_xonly(to_xonly(public_key))
    elif utxo.address_type == 'p2wpkh':
        pass
    elif utxo.address_type == 'p2sh':
        redeem_script = Script(b'\x00\x14' + hash160(compressed_pubkey(public_key)))
        expected = Script(b'\xa9\x14' + hash160(redeem_script.data) + b'\x87')
        if expected != script_pubkey:
            raise UnsupportedScriptType(
                f"{utxo.outpoint}: p2sh output is not a nested p2wpkh of the given key"
            )
        inp.redeem_script = redeem_script
    else:
        raise UnsupportedScriptType(f"{utxo.outpoint}: unsupported script type {utxo.address_type!r}")

    if sighash_type is not None:
        inp.sighash_type = sighash_type

    return inp


def input_from_psbt_output(
    psbt: PSBT,
    index: int,
    public_key: str,
    sighash_type: Optional[int] = None,
    txid: Optional[str] = None
) -> InputDescriptor:
    """
    Describe an output of a PSBT as a spendable input of the next one.

    Args:
        psbt: PSBT containing the output
        index: Output index
        public_key: Key that will spend the output
        sighash_type: Optional sighash type for the new input
        txid: Unsigned txid of psbt if already known

    Returns:
        TaprootInputDescriptor or SegwitV0InputDescriptor

    Raises:
        InputError: If the output index does not exist
        UnsupportedScriptType: If the output is neither p2tr nor p2wpkh
    """
    if not 0 <= index < len(psbt.outputs):
        raise InputError(f"Output index {index} out of range ({len(psbt.outputs)} outputs)")

    out = psbt.outputs[index]
    txid = txid or unsigned_txid(psbt)
    script_type = out.script_pubkey.script_type()

    if script_type == 'p2tr':
        return TaprootInputDescriptor(
            txid=txid,
            vout=index,
            value=out.value,
            script_pubkey=out.script_pubkey.data,
            internal_key=to_xonly(public_key),
            sighash_type=sighash_type
        )
    if script_type == 'p2wpkh':
        return SegwitV0InputDescriptor(
            txid=txid,
            vout=index,
            value=out.value,
            script_pubkey=out.script_pubkey.data,
            sighash_type=sighash_type
        )

    raise UnsupportedScriptType(f"Cannot chain output {txid}:{index} of type {script_type!r}")


def descriptor_to_input(
    descriptor: InputDescriptor,
    commitment: Optional[CommitmentPayment] = None
) -> InputScope:
    """
    Build a PSBT input from an input descriptor.

    For taproot outputs locked to a commitment address the merkle root and
    the redeem leaf (with its control block) are attached so the signer can
    spend through the single-signature leaf.

    Args:
        descriptor: Input descriptor from input_from_psbt_output()
        commitment: Script tree the output commits to, if any

    Returns:
        InputScope
    """
    inp = InputScope(
        unknown={},
        vin=TransactionInput(bytes.fromhex(descriptor.txid), descriptor.vout, sequence=RBF_SEQUENCE)
    )
    inp.witness_utxo = TransactionOutput(descriptor.value, Script(descriptor.script_pubkey))
    if descriptor.sighash_type is not None:
        inp.sighash_type = descriptor.sighash_type

    if isinstance(descriptor, TaprootInputDescriptor):
        inp.taproot_internal_key = ec.PublicKey.from_xonly(descriptor.internal_key)
        if commitment is not None:
            inp.taproot_merkle_root = commitment.merkle_root
            inp.taproot_scripts[commitment.control_block] = (
                commitment.redeem_script + bytes([TAPSCRIPT_LEAF_VERSION])
            )

    return inp


def psbt_coins(psbt: PSBT) -> Tuple[List[CoinInput], List[CoinOutput]]:
    """
    Inputs and outputs of a PSBT as seen by the size estimator.

    Raises:
        InputError: If an input lacks its previous output
    """
    inputs = []
    for idx, inp in enumerate(psbt.inputs):
        utxo = inp.utxo
        if utxo is None:
            raise InputError(f"Input {idx} has no previous output data")
        inputs.append(CoinInput(
            value=utxo.value,
            script_type=utxo.script_pubkey.script_type() or '',
            script_path=inp.taproot_merkle_root is not None
        ))

    outputs = [
        CoinOutput(value=out.value, script_type=out.script_pubkey.script_type() or '')
        for out in psbt.outputs
    ]
    return inputs, outputs


def get_vbytes(psbt: PSBT) -> float:
    """Estimated virtual size of a PSBT once fully signed."""
    return estimate_vbytes(*psbt_coins(psbt))


def get_total_fees(psbt: PSBT) -> int:
    """Fee paid by a PSBT: total input value minus total output value."""
    inputs, outputs = psbt_coins(psbt)
    return sum(i.value for i in inputs) - sum(o.value for o in outputs)


def calculate_funding_amount(psbt: PSBT, fee_rate: float) -> int:
    """
    Satoshis that must be added to a PSBT's inputs to pay its outputs and fee.

    Args:
        psbt: PSBT to measure
        fee_rate: Fee rate in sat/vB

    Returns:
        Missing funding, zero or negative if already covered
    """
    return estimate_funding(*psbt_coins(psbt), fee_rate)


def with_dummy_commitment_input(seller_psbt: PSBT, commitment: CommitmentPayment) -> PSBT:
    """
    Copy of a seller PSBT with a placeholder buyer input spending the commitment.

    Used to size a second transaction before the first one exists.
    """
    psbt = copy_psbt(seller_psbt)
    inp = InputScope(unknown={}, vin=TransactionInput(b'\x00' * 32, 0, sequence=RBF_SEQUENCE))
    inp.witness_utxo = TransactionOutput(DUMMY_INPUT_VALUE, Script(commitment.script_pubkey))
    inp.taproot_internal_key = ec.PublicKey.from_xonly(commitment.internal_key)
    inp.taproot_merkle_root = commitment.merkle_root
    psbt.inputs.append(inp)
    return psbt


def _output(address: str, amount: int, network: str, chain: str) -> OutputScope:
    return OutputScope(unknown={}, vout=TransactionOutput(amount, address_to_script(address, network, chain)))


def build_first_transaction(
    session: BuildSession,
    outputs: List[TxOutput],
    buyer_address: str,
    buyer_public_key: str,
    fee_rate: float,
    network: str = 'mainnet',
    chain: str = 'bitcoin'
) -> PSBT:
    """
    Build the funding PSBT paying the commitment address and the CPFP output.

    Coin selection runs over the session's buyer UTXOs; any change goes back
    to the buyer address after the target outputs. The unsigned txid is
    stored on the session for the chained transactions.

    Args:
        session: Build session holding buyer UTXOs
        outputs: Target outputs, one per inscription then the CPFP output
        buyer_address: Change address
        buyer_public_key: Key controlling the buyer UTXOs
        fee_rate: Fee rate in sat/vB
        network: Network name
        chain: Chain name

    Returns:
        Unsigned PSBT

    Raises:
        InsufficientFunds: If the buyer UTXOs cannot cover the outputs
        NoOutputSelected: If coin selection returned no outputs
    """
    candidates = [
        CoinInput(value=utxo.value, script_type=utxo.address_type, ref=utxo)
        for utxo in session.buyer_utxos
    ]
    targets = [
        CoinOutput(
            value=o.amount,
            script_type=get_address_type(o.address, network, chain),
            address=o.address
        )
        for o in outputs
    ]
    change = CoinOutput(value=0, script_type=get_address_type(buyer_address, network, chain),
                        address=buyer_address)

    selection = select(candidates, targets, fee_rate, change)
    if not selection.inputs:
        needed = sum(o.amount for o in outputs)
        available = sum(u.value for u in session.buyer_utxos)
        raise InsufficientFunds(
            f"Insufficient funds: need {needed:,} sats plus fees, have {available:,} sats"
        )
    if not selection.outputs:
        raise NoOutputSelected("Coin selection returned no outputs")

    psbt = PSBT(Transaction(vin=[], vout=[]))
    for coin in selection.inputs:
        psbt.inputs.append(process_input(coin.ref, buyer_public_key))
    for coin in selection.outputs:
        psbt.outputs.append(_output(coin.address, coin.value, network, chain))

    session.first_txid = unsigned_txid(psbt)
    logger.debug(
        f"First transaction {session.first_txid}: {len(psbt.inputs)} inputs, "
        f"{len(psbt.outputs)} outputs, fee {selection.fee:.0f} sats"
    )
    return psbt


def build_second_transaction(
    session: BuildSession,
    first_psbt: PSBT,
    index: int,
    seller_psbt: PSBT,
    buyer_public_key: str,
    commitment: CommitmentPayment
) -> PSBT:
    """
    Append the buyer's funding input to a seller-signed inscription PSBT.

    The seller's input and outputs are left untouched; the output at `index`
    of the first transaction is added as the last input, signed ALL by the
    buyer through the commitment redeem leaf.

    Args:
        session: Build session holding the first txid
        first_psbt: First transaction
        index: Output of the first transaction funding this purchase
        seller_psbt: Seller-signed inscription PSBT
        buyer_public_key: Buyer public key
        commitment: Buyer commitment the funding output is locked to

    Returns:
        Two-input PSBT
    """
    descriptor = input_from_psbt_output(
        first_psbt, index, buyer_public_key, SIGHASH.ALL, txid=session.first_txid
    )
    psbt = copy_psbt(seller_psbt)
    psbt.inputs.append(descriptor_to_input(descriptor, commitment))
    return psbt


def build_withdraw_transaction(
    session: BuildSession,
    first_psbt: PSBT,
    cpfp_index: int,
    second_psbts: List[PSBT],
    receive_address: str,
    escrow_public_key: str,
    buyer_public_key: str,
    commitment: CommitmentPayment,
    extra_outputs: Optional[List[TxOutput]] = None,
    network: str = 'mainnet',
    chain: str = 'bitcoin'
) -> PSBT:
    """
    Build the withdraw PSBT moving every inscription out of escrow.

    Inputs are the escrow outputs of each second transaction, in order,
    followed by the CPFP output of the first transaction. Outputs send each
    escrowed value to the receive address, then any extra outputs.

    Args:
        session: Build session holding the first txid
        first_psbt: First transaction
        cpfp_index: Index of the CPFP output in the first transaction
        second_psbts: Second transactions
        receive_address: Buyer address receiving the inscriptions
        escrow_public_key: Escrow public key
        buyer_public_key: Buyer public key
        commitment: Buyer commitment the CPFP output is locked to
        extra_outputs: Additional outputs (e.g. marketplace fee)
        network: Network name
        chain: Chain name

    Returns:
        Unsigned PSBT

    Raises:
        InvalidSellerPst: If a second transaction does not pay its escrow address
    """
    psbt = PSBT(Transaction(vin=[], vout=[]))

    for second in second_psbts:
        inscription_outpoint = outpoint_of_input(second, 0)
        escrow = get_escrow_payment(inscription_outpoint, escrow_public_key, network, chain)

        descriptor = input_from_psbt_output(second, 0, escrow_public_key, SIGHASH.ALL)
        if descriptor.script_pubkey != escrow.script_pubkey:
            raise InvalidSellerPst(
                f"Inscription {inscription_outpoint} is not sent to its escrow address {escrow.address}"
            )

        psbt.inputs.append(descriptor_to_input(descriptor, escrow))
        psbt.outputs.append(_output(receive_address, descriptor.value, network, chain))

    for extra in extra_outputs or []:
        psbt.outputs.append(_output(extra.address, extra.amount, network, chain))

    cpfp = input_from_psbt_output(
        first_psbt, cpfp_index, buyer_public_key, SIGHASH.ALL, txid=session.first_txid
    )
    psbt.inputs.append(descriptor_to_input(cpfp, commitment))

    return psbt


def build_inscription_psbt(
    utxo: UTXO,
    seller_public_key: str,
    receive_payment_address: str,
    price: int,
    escrow_public_key: str,
    network: str = 'mainnet',
    chain: str = 'bitcoin'
) -> PSBT:
    """
    Build the seller's PSBT listing an inscription.

    The inscription UTXO is the only input (to be signed ALL|ANYONECANPAY by
    the seller). Output 0 sends the inscription to its escrow address,
    output 1 pays the price to the seller.

    Args:
        utxo: UTXO holding the inscription
        seller_public_key: Seller public key
        receive_payment_address: Address receiving the price
        price: Price in satoshis
        escrow_public_key: Escrow public key
        network: Network name
        chain: Chain name

    Returns:
        Unsigned PSBT
    """
    if price <= 0:
        raise InputError(f"Price must be positive, got {price}")

    escrow = get_escrow_payment(utxo.outpoint, escrow_public_key, network, chain)

    psbt = PSBT(Transaction(vin=[], vout=[]))
    psbt.inputs.append(process_input(utxo, seller_public_key, SELLER_SIGHASH))
    psbt.outputs.append(_output(escrow.address, utxo.value, network, chain))
    psbt.outputs.append(_output(receive_payment_address, price, network, chain))

    logger.debug(
        f"Inscription PSBT for {utxo.outpoint}: escrow {escrow.address}, "
        f"price {price:,} sats to {receive_payment_address}"
    )
    return psbt


def seller_address_of(psbt: PSBT, network: str = 'mainnet', chain: str = 'bitcoin') -> str:
    """
    Address that owns the first input of a seller PSBT.

    Raises:
        InvalidSellerPst: If the input has no witness UTXO
    """
    if not psbt.inputs or psbt.inputs[0].witness_utxo is None:
        raise InvalidSellerPst("invalid seller psbt")
    return script_to_address(psbt.inputs[0].witness_utxo.script_pubkey, network, chain)
