"""
Coin selection and transaction size estimation.

This module contains pure functions for:
- Estimating the virtual size (vbytes) of a transaction from its input and
  output script types
- Estimating how much extra funding a transaction needs at a fee rate
- Selecting buyer UTXOs to cover a set of outputs (blackjack first, then
  accumulative), adding a change output when the remainder is not dust

Sizes are the usual per-script-type averages, so estimates for a given
layout are stable regardless of signature lengths.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

# Base overhead: version, input count, output count, locktime, segwit marker
TX_OVERHEAD_VBYTES = 10.5

# Input sizes (outpoint + sequence + scriptSig + witness / 4)
INPUT_VBYTES = {
    'p2tr': 57.5,         # key path spend
    'p2wpkh': 68,
    'p2sh': 91,           # nested p2wpkh
    'p2pkh': 148,
}
# Script path spend through a single-signature leaf of a two-leaf tree:
# signature (65) + leaf script (34) + control block (65) + length prefixes
TAPROOT_SCRIPT_PATH_INPUT_VBYTES = 41 + 168 / 4
UNKNOWN_INPUT_VBYTES = 150

OUTPUT_VBYTES = {
    'p2tr': 43,
    'p2wsh': 43,
    'p2wpkh': 31,
    'p2sh': 32,
    'p2pkh': 34,
}
UNKNOWN_OUTPUT_VBYTES = 50


@dataclass
class CoinInput:
    """An input as seen by the size estimator and the selector."""
    value: int
    script_type: str
    script_path: bool = False
    ref: Optional[object] = None  # the UTXO this candidate stands for


@dataclass
class CoinOutput:
    """An output as seen by the size estimator and the selector."""
    value: int
    script_type: str
    address: str = ''


@dataclass
class Selection:
    """Result of coin selection. inputs is empty when no solution was found."""
    inputs: List[CoinInput] = field(default_factory=list)
    outputs: List[CoinOutput] = field(default_factory=list)
    fee: float = 0


def input_vbytes(coin: CoinInput) -> float:
    if coin.script_type == 'p2tr' and coin.script_path:
        return TAPROOT_SCRIPT_PATH_INPUT_VBYTES
    return INPUT_VBYTES.get(coin.script_type, UNKNOWN_INPUT_VBYTES)


def output_vbytes(coin: CoinOutput) -> float:
    return OUTPUT_VBYTES.get(coin.script_type, UNKNOWN_OUTPUT_VBYTES)


def estimate_vbytes(inputs: List[CoinInput], outputs: List[CoinOutput]) -> float:
    """
    Estimate the virtual size of a transaction.

    Args:
        inputs: Inputs with script types
        outputs: Outputs with script types

    Returns:
        Estimated size in virtual bytes
    """
    return (
        TX_OVERHEAD_VBYTES
        + sum(input_vbytes(i) for i in inputs)
        + sum(output_vbytes(o) for o in outputs)
    )


def estimate_funding(inputs: List[CoinInput], outputs: List[CoinOutput], fee_rate: float) -> int:
    """
    Extra satoshis the inputs must provide for the outputs plus fee.

    funding = ceil(outputs + fee_rate * vbytes - inputs)

    A result of zero or less means the inputs already cover outputs and fee.
    """
    total_in = sum(i.value for i in inputs)
    total_out = sum(o.value for o in outputs)
    required = total_out + fee_rate * estimate_vbytes(inputs, outputs) - total_in
    # Rounding first keeps float noise like 100.00000000001 from adding a satoshi
    return math.ceil(round(required, 8))


def _dust_threshold(fee_rate: float, change: CoinOutput) -> float:
    # Cost of spending the change later
    return input_vbytes(CoinInput(value=0, script_type=change.script_type)) * fee_rate


def _utxo_score(coin: CoinInput, fee_rate: float) -> float:
    return coin.value - fee_rate * input_vbytes(coin)


def _finalize(inputs: List[CoinInput], outputs: List[CoinOutput], fee_rate: float,
              change: CoinOutput) -> Selection:
    vbytes = estimate_vbytes(inputs, outputs)
    fee_after_change = fee_rate * (vbytes + output_vbytes(change))
    total_in = sum(i.value for i in inputs)
    remainder = total_in - (sum(o.value for o in outputs) + fee_after_change)

    outputs = list(outputs)
    if remainder > _dust_threshold(fee_rate, change):
        outputs.append(CoinOutput(
            value=math.floor(remainder),
            script_type=change.script_type,
            address=change.address
        ))

    fee = total_in - sum(o.value for o in outputs)
    return Selection(inputs=list(inputs), outputs=outputs, fee=fee)


def _blackjack(utxos: List[CoinInput], outputs: List[CoinOutput], fee_rate: float,
               change: CoinOutput) -> Selection:
    """Look for an input set that needs no change output."""
    vbytes = estimate_vbytes([], outputs)
    total_out = sum(o.value for o in outputs)
    threshold = _dust_threshold(fee_rate, change)
    total_in = 0
    selected = []

    for utxo in utxos:
        size = input_vbytes(utxo)
        fee = fee_rate * (vbytes + size)

        # Would overshoot by more than dust
        if total_in + utxo.value > total_out + fee + threshold:
            continue

        vbytes += size
        total_in += utxo.value
        selected.append(utxo)

        if total_in < total_out + fee:
            continue

        return _finalize(selected, outputs, fee_rate, change)

    return Selection(fee=fee_rate * vbytes)


def _accumulative(utxos: List[CoinInput], outputs: List[CoinOutput], fee_rate: float,
                  change: CoinOutput) -> Selection:
    """Add inputs in order until outputs and fee are covered."""
    vbytes = estimate_vbytes([], outputs)
    total_out = sum(o.value for o in outputs)
    total_in = 0
    selected = []

    for utxo in utxos:
        size = input_vbytes(utxo)

        # Skip inputs that cost more to spend than they are worth
        if fee_rate * size > utxo.value:
            continue

        vbytes += size
        total_in += utxo.value
        selected.append(utxo)

        if total_in < total_out + fee_rate * vbytes:
            continue

        return _finalize(selected, outputs, fee_rate, change)

    return Selection(fee=fee_rate * vbytes)


def select(
    utxos: List[CoinInput],
    outputs: List[CoinOutput],
    fee_rate: float,
    change: CoinOutput
) -> Selection:
    """
    Select inputs covering the outputs at the given fee rate.

    Candidates are ranked by effective value (value minus the cost of
    spending them). An exact match without change is tried first, then
    inputs are accumulated largest first.

    Args:
        utxos: Candidate inputs
        outputs: Target outputs, kept in order
        fee_rate: Fee rate in sat/vB
        change: Template for the change output (script type and address,
            value is ignored); appended last when the remainder is not dust

    Returns:
        Selection; its inputs are empty if the candidates cannot cover the outputs
    """
    ranked = sorted(utxos, key=lambda u: _utxo_score(u, fee_rate), reverse=True)

    result = _blackjack(ranked, outputs, fee_rate, change)
    if result.inputs:
        return result

    return _accumulative(ranked, outputs, fee_rate, change)
