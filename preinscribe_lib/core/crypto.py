"""
Cryptographic helpers for BIP-340 keys and BIP-341 Taproot script trees.

This module contains pure functions for:
- Tagged hashing (BIP-340)
- Converting public keys to their x-only (even-y) form
- Tap leaf / tap branch hashing for two-leaf script trees
- Taproot output key tweaking (with output parity for control blocks)

All functions are pure (no side effects) and use external libraries:
- coincurve for elliptic curve operations
- hashlib for hashing
"""

import hashlib
from typing import Tuple
from coincurve import PublicKey, PrivateKey

from .constants import TAPSCRIPT_LEAF_VERSION
from .errors import InputError, AddressConstructionError


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    Compute a BIP-340 tagged hash: sha256(sha256(tag) || sha256(tag) || data).

    Args:
        tag: Hash tag (e.g. "TapLeaf", "TapBranch", "TapTweak")
        data: Message bytes

    Returns:
        32-byte digest
    """
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    sha256_hash = hashlib.sha256(data).digest()
    return hashlib.new('ripemd160', sha256_hash).digest()


def to_xonly(public_key_hex: str) -> bytes:
    """
    Convert a public key to its 32-byte x-only form.

    Accepts compressed (66 hex chars), uncompressed (130 hex chars) or
    already x-only (64 hex chars) keys. The key is parsed with coincurve so
    points that are not on the curve are rejected.

    Args:
        public_key_hex: Public key in hex

    Returns:
        32-byte x-only public key

    Raises:
        InputError: If the key is not valid hex or not on the curve
    """
    try:
        key_bytes = bytes.fromhex(public_key_hex)
        if len(key_bytes) == 32:
            # BIP-340 x-only keys imply an even y-coordinate
            key_bytes = b'\x02' + key_bytes
        pubkey = PublicKey(key_bytes)
    except (ValueError, TypeError) as e:
        raise InputError(f"Invalid public key {public_key_hex!r}: {e}") from e

    return pubkey.format(compressed=True)[1:33]


def compressed_pubkey(public_key_hex: str) -> bytes:
    """
    Get the 33-byte compressed SEC encoding of a public key.

    Raises:
        InputError: If the key is not valid or is x-only (parity unknown)
    """
    try:
        key_bytes = bytes.fromhex(public_key_hex)
        if len(key_bytes) == 32:
            raise ValueError("x-only key has no parity information")
        return PublicKey(key_bytes).format(compressed=True)
    except (ValueError, TypeError) as e:
        raise InputError(f"Invalid public key {public_key_hex!r}: {e}") from e


def ser_compact_size(n: int) -> bytes:
    """Bitcoin CompactSize encoding of a length prefix."""
    if n < 0xfd:
        return bytes([n])
    if n <= 0xffff:
        return b'\xfd' + n.to_bytes(2, 'little')
    if n <= 0xffffffff:
        return b'\xfe' + n.to_bytes(4, 'little')
    return b'\xff' + n.to_bytes(8, 'little')


def tapleaf_hash(script: bytes, leaf_version: int = TAPSCRIPT_LEAF_VERSION) -> bytes:
    """
    Hash a tapscript leaf: H_TapLeaf(leaf_version || compact_size(script) || script).

    Args:
        script: Raw leaf script bytes
        leaf_version: Leaf version byte (0xc0 for tapscript)

    Returns:
        32-byte leaf hash
    """
    return tagged_hash("TapLeaf", bytes([leaf_version]) + ser_compact_size(len(script)) + script)


def tapbranch_hash(left: bytes, right: bytes) -> bytes:
    """
    Hash two child nodes of a script tree. Children are sorted lexicographically.

    Args:
        left: 32-byte child hash
        right: 32-byte child hash

    Returns:
        32-byte branch hash
    """
    if right < left:
        left, right = right, left
    return tagged_hash("TapBranch", left + right)


def taproot_tweak_pubkey(internal_pubkey: bytes, merkle_root: bytes = b'') -> Tuple[bytes, int]:
    """
    Tweak an x-only internal key according to BIP-341.

    Q = P + H_TapTweak(P || merkleRoot) * G

    Args:
        internal_pubkey: 32-byte x-only internal key
        merkle_root: 32-byte script tree root (empty for key-path only outputs)

    Returns:
        Tuple of (output_key, parity) where:
        - output_key is the 32-byte x-only tweaked key
        - parity is 0 for even y, 1 for odd y (used in control blocks)

    Raises:
        AddressConstructionError: If the key is not on the curve or the tweak overflows
    """
    try:
        # BIP-341 uses even y-coordinate convention for internal keys
        P = PublicKey(b'\x02' + internal_pubkey)

        tweak_bytes = tagged_hash("TapTweak", internal_pubkey + merkle_root)

        # Compute Q = P + tweak * G
        tweak_point = PrivateKey(tweak_bytes).public_key
        Q = P.combine([tweak_point])

        Q_compressed = Q.format(compressed=True)
    except (ValueError, TypeError) as e:
        raise AddressConstructionError(f"Error tweaking public key: {e}") from e

    parity = 1 if Q_compressed[0] == 0x03 else 0
    return Q_compressed[1:33], parity
