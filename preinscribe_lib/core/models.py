"""
Data models for protected inscription purchases.

This module contains all dataclasses used throughout the application
for representing UTXOs, inscriptions, commitment addresses, chained input
descriptors, the per-call build session and the final response.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Union

from embit.script import Script

from .constants import SATS_PER_BTC, TAPSCRIPT_LEAF_VERSION
from .crypto import tapleaf_hash

# Indexer script type names -> embit script type names
INDEXER_SCRIPT_TYPES = {
    'witness_v1_taproot': 'p2tr',
    'witness_v0_keyhash': 'p2wpkh',
    'witness_v0_scripthash': 'p2wsh',
    'scripthash': 'p2sh',
    'pubkeyhash': 'p2pkh',
}


@dataclass
class UTXO:
    """Unspent transaction output controlled by the buyer or the seller."""
    txid: str
    vout: int
    value: int  # satoshis
    script_pubkey: str  # hex
    address: str = ''
    address_type: str = ''  # embit script type: p2tr, p2wpkh, p2sh, ...
    safe_to_spend: Optional[bool] = None

    def __post_init__(self):
        if not self.address_type and self.script_pubkey:
            self.address_type = Script(bytes.fromhex(self.script_pubkey)).script_type() or ''

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UTXO':
        """
        Create UTXO from dictionary (e.g., from indexer response).

        Accepts the indexer layout ({txid, n, sats, scriptPubKey: {hex, address, type}})
        as well as the flat layout produced by to_dict().
        """
        spk = data.get('scriptPubKey')
        if isinstance(spk, dict):
            script_hex = spk.get('hex', '')
            address = spk.get('address', '')
            script_type = INDEXER_SCRIPT_TYPES.get(spk.get('type', ''), '')
        else:
            script_hex = data.get('script_pubkey', spk or '')
            address = data.get('address', '')
            script_type = data.get('address_type', '')

        return cls(
            txid=data['txid'],
            vout=int(data['n'] if 'n' in data else data['vout']),
            value=int(data['sats'] if 'sats' in data else data['value']),
            script_pubkey=script_hex,
            address=address,
            address_type=script_type,
            safe_to_spend=data.get('safeToSpend')
        )

    def __str__(self) -> str:
        """Human-readable string representation."""
        btc_value = self.value / SATS_PER_BTC
        addr_display = f" | {self.address[:20]}..." if self.address else ""
        return f"{self.txid}:{self.vout} | {btc_value:.8f} BTC ({self.value:,} sats){addr_display}"

    def to_dict(self) -> Dict[str, Any]:
        """Export UTXO data as dictionary."""
        return {
            'txid': self.txid,
            'vout': self.vout,
            'value': self.value,
            'script_pubkey': self.script_pubkey,
            'address': self.address,
            'address_type': self.address_type,
        }


@dataclass
class Inscription:
    """Inscription record returned by the inscription index."""
    id: str
    outpoint: str
    owner: str
    media_type: str = ''
    number: Optional[int] = None
    height: Optional[int] = None
    sat: Optional[int] = None
    meta: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Inscription':
        """Create Inscription from dictionary (e.g., from indexer response)."""
        return cls(
            id=data.get('id', ''),
            outpoint=data.get('outpoint', ''),
            owner=data.get('owner', ''),
            media_type=data.get('mediaType', data.get('media_type', '')),
            number=data.get('number'),
            height=data.get('height'),
            sat=data.get('sat'),
            meta=data.get('meta')
        )


@dataclass
class UnspentsResponse:
    """UTXOs of an address split by spendability."""
    spendable_utxos: List[UTXO]
    unspendable_utxos: List[UTXO] = field(default_factory=list)
    total_count: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UnspentsResponse':
        spendable = [UTXO.from_dict(u) for u in data.get('spendableUTXOs', [])]
        unspendable = [UTXO.from_dict(u) for u in data.get('unspendableUTXOs', [])]
        return cls(
            spendable_utxos=spendable,
            unspendable_utxos=unspendable,
            total_count=data.get('totalUTXOs', len(spendable) + len(unspendable))
        )


@dataclass
class TxOutput:
    """Transaction output (cleaner than Tuple[str, int])."""
    address: str
    amount: int  # satoshis

    def __str__(self) -> str:
        """Human-readable string representation."""
        return f"{self.address}: {self.amount:,} sats"


@dataclass
class SerializedPSBT:
    """A PSBT in both portable encodings."""
    hex: str
    base64: str


@dataclass
class CommitmentPayment:
    """
    Taproot output committing to a two-leaf script tree.

    Leaf A (redeem_script) is the single-signature spend path, leaf B
    (data_script) carries the envelope. merkle_root must be attached to any
    input spending this output.
    """
    address: str
    script_pubkey: bytes
    internal_key: bytes  # x-only
    output_key: bytes  # x-only
    parity: int
    merkle_root: bytes
    redeem_script: bytes
    data_script: bytes

    @property
    def merkle_proof_hex(self) -> str:
        return self.merkle_root.hex()

    @property
    def control_block(self) -> bytes:
        """BIP-341 control block for spending through the redeem leaf."""
        return (
            bytes([TAPSCRIPT_LEAF_VERSION | self.parity])
            + self.internal_key
            + tapleaf_hash(self.data_script)
        )


@dataclass
class EscrowAddress:
    """Escrow holding address bound to an inscription outpoint."""
    address: str
    merkle_proof_hex: str


@dataclass
class TaprootInputDescriptor:
    """Spendable p2tr output of a previous PSBT."""
    txid: str
    vout: int
    value: int
    script_pubkey: bytes
    internal_key: bytes  # x-only
    sighash_type: Optional[int] = None


@dataclass
class SegwitV0InputDescriptor:
    """Spendable p2wpkh output of a previous PSBT."""
    txid: str
    vout: int
    value: int
    script_pubkey: bytes
    sighash_type: Optional[int] = None


InputDescriptor = Union[TaprootInputDescriptor, SegwitV0InputDescriptor]


@dataclass
class BuildSession:
    """
    Mutable state of a single build_transactions() call.

    Created fresh per call and never reused. buyer_utxos is written once
    before the fee loop; first_txid is rewritten on every iteration by the
    first-transaction builder.
    """
    buyer_utxos: List[UTXO] = field(default_factory=list)
    first_txid: Optional[str] = None
    cpfp_funding: int = 0
    iterations: int = 0


@dataclass
class BuildTransactionsResponse:
    """The three PSBTs of a protected purchase, ready for external signing."""
    first_transaction_psbt_base64: str
    second_transaction_psbt_base64s: List[str]
    third_transaction_psbt_base64: str
    cpfp_funding: int = 0
    iterations: int = 0
    total_vbytes: float = 0.0
    total_fee: int = 0
    signing_plan: Dict[str, Any] = field(default_factory=dict)
    first_transaction_psbt_hex: str = ''
    second_transaction_psbt_hexes: List[str] = field(default_factory=list)
    third_transaction_psbt_hex: str = ''

    @property
    def effective_fee_rate(self) -> float:
        """Realized aggregate fee rate (sat/vB) across all transactions."""
        if not self.total_vbytes:
            return 0.0
        return self.total_fee / self.total_vbytes

    def to_dict(self) -> Dict[str, Any]:
        """Export response as dictionary."""
        return {
            'firstTransactionPSBTB64': self.first_transaction_psbt_base64,
            'secondTransactionPSBTB64s': list(self.second_transaction_psbt_base64s),
            'thirdTransactionPSBTB64': self.third_transaction_psbt_base64,
            'firstTransactionPSBTHex': self.first_transaction_psbt_hex,
            'secondTransactionPSBTHexes': list(self.second_transaction_psbt_hexes),
            'thirdTransactionPSBTHex': self.third_transaction_psbt_hex,
            'cpfp_funding': self.cpfp_funding,
            'iterations': self.iterations,
            'total_vbytes': self.total_vbytes,
            'total_fee': self.total_fee,
            'effective_fee_rate': self.effective_fee_rate,
            'signing_plan': self.signing_plan,
        }
