"""
Ordinals inscription envelope scripts.

The data leaf of every commitment address embeds off-chain metadata using
the same envelope layout as an ordinals inscription:

    <x-only key> OP_CHECKSIG
    OP_FALSE OP_IF
        "ord"
        01 <content type>
        [02 <pointer>]
        OP_0
        <content chunk> ...
    OP_ENDIF

The OP_FALSE guard means the IF branch never executes, so the envelope only
commits data; it never adds a way to spend the output.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from .constants import ENVELOPE_MEDIA_TYPE, MAX_SCRIPT_ELEMENT_SIZE

OP_0 = 0x00
OP_PUSHDATA1 = 0x4c
OP_PUSHDATA2 = 0x4d
OP_IF = 0x63
OP_ENDIF = 0x68
OP_CHECKSIG = 0xac

ENVELOPE_PROTOCOL_ID = b'ord'
TAG_CONTENT_TYPE = b'\x01'
TAG_POINTER = b'\x02'


@dataclass
class Envelope:
    """A single inscription envelope."""
    content: bytes
    media_type: str = ENVELOPE_MEDIA_TYPE
    pointer: int = 0  # output offset tag, omitted when zero

    @classmethod
    def from_json(cls, payload: Dict[str, Any], media_type: str = ENVELOPE_MEDIA_TYPE) -> 'Envelope':
        """Create an envelope carrying compact JSON (no whitespace, key order preserved)."""
        content = json.dumps(payload, separators=(',', ':')).encode('utf-8')
        return cls(content=content, media_type=media_type)


def push_data(data: bytes) -> bytes:
    """
    Encode a script data push using the smallest push opcode.

    Args:
        data: Bytes to push (at most 520 bytes)

    Returns:
        Serialized push operation
    """
    length = len(data)
    if length > MAX_SCRIPT_ELEMENT_SIZE:
        raise ValueError(f"Push of {length} bytes exceeds {MAX_SCRIPT_ELEMENT_SIZE}")
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xff:
        return bytes([OP_PUSHDATA1, length]) + data
    return bytes([OP_PUSHDATA2]) + length.to_bytes(2, 'little') + data


def chunk_content(content: bytes, size: int = MAX_SCRIPT_ELEMENT_SIZE) -> List[bytes]:
    """Split content into pushes of at most `size` bytes."""
    return [content[i:i + size] for i in range(0, len(content), size)]


def encode_pointer(pointer: int) -> bytes:
    """Little-endian pointer value with trailing zero bytes removed."""
    raw = pointer.to_bytes(8, 'little')
    return raw.rstrip(b'\x00') or b'\x00'


def build_redeem_script(xonly_key: bytes) -> bytes:
    """Single-signature tapscript leaf: <x-only key> OP_CHECKSIG."""
    return push_data(xonly_key) + bytes([OP_CHECKSIG])


def build_envelope_script(xonly_key: bytes, envelopes: List[Envelope]) -> bytes:
    """
    Build the data-carrying leaf script for one or more envelopes.

    Args:
        xonly_key: 32-byte x-only key guarding the leaf
        envelopes: Envelopes to embed, in order

    Returns:
        Raw tapscript bytes
    """
    script = build_redeem_script(xonly_key)

    for envelope in envelopes:
        script += bytes([OP_0, OP_IF])
        script += push_data(ENVELOPE_PROTOCOL_ID)
        script += push_data(TAG_CONTENT_TYPE)
        script += push_data(envelope.media_type.encode('utf-8'))
        if envelope.pointer:
            script += push_data(TAG_POINTER)
            script += push_data(encode_pointer(envelope.pointer))
        # Body separator
        script += bytes([OP_0])
        for chunk in chunk_content(envelope.content):
            script += push_data(chunk)
        script += bytes([OP_ENDIF])

    return script
