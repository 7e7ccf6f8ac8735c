"""
Utility functions for protected inscription purchases.

This module provides helper functions for formatting and parsing values
used throughout the application.
"""

import logging
from typing import Tuple

from .core.constants import SATS_PER_BTC
from .core.errors import InputError

logger = logging.getLogger('preinscribe.utils')


def format_btc(satoshis: int) -> str:
    """
    Format satoshis as BTC.

    Args:
        satoshis: Amount in satoshis

    Returns:
        Formatted string (e.g., "0.00123456 BTC")
    """
    return f"{satoshis / SATS_PER_BTC:.8f} BTC"


def parse_outpoint(outpoint: str) -> Tuple[str, int]:
    """
    Parse an outpoint string ("txid:vout").

    Args:
        outpoint: Outpoint in "txid:vout" format

    Returns:
        Tuple of (txid, vout)

    Raises:
        InputError: If the outpoint is malformed
    """
    parts = outpoint.split(':') if isinstance(outpoint, str) else []
    if len(parts) != 2:
        logger.error(f"Invalid outpoint: expected txid:vout, got {outpoint!r}")
        raise InputError(f"Invalid outpoint {outpoint!r}: expected txid:vout")

    txid, vout_str = parts[0].strip(), parts[1].strip()
    try:
        if len(txid) != 64:
            raise ValueError("txid must be 64 hex characters")
        bytes.fromhex(txid)
        vout = int(vout_str)
        if vout < 0:
            raise ValueError("vout must not be negative")
    except ValueError as e:
        logger.error(f"Invalid outpoint {outpoint!r}: {e}")
        raise InputError(f"Invalid outpoint {outpoint!r}: {e}") from e

    return txid, vout


def format_fee_rate(fee_sats: float, vbytes: float) -> float:
    """
    Calculate fee rate in sat/vB.

    Args:
        fee_sats: Fee in satoshis
        vbytes: Transaction size in virtual bytes

    Returns:
        Fee rate rounded to 2 decimals (0.0 for an empty size)
    """
    if vbytes <= 0:
        return 0.0
    return round(fee_sats / vbytes, 2)
