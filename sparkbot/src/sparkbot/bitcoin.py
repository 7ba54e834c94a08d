"""
Bitcoin transaction helpers.

Just enough transaction parsing to identify a raw deposit transaction
(txid and outputs) when an operator hands over hex instead of a txid.
"""

from __future__ import annotations

import hashlib
import re
import struct
from dataclasses import dataclass

RAW_TX_INPUT_PATTERN = re.compile(r"^[0-9a-fA-F]{200,}$")


def hash256(data: bytes) -> bytes:
    """SHA256(SHA256(data)) - Used for Bitcoin txids."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def encode_varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode Bitcoin varint from bytes.

    Returns:
        (value, new_offset) tuple
    """
    first = data[offset]
    if first < 0xFD:
        return first, offset + 1
    elif first == 0xFD:
        return struct.unpack("<H", data[offset + 1 : offset + 3])[0], offset + 3
    elif first == 0xFE:
        return struct.unpack("<I", data[offset + 1 : offset + 5])[0], offset + 5
    else:
        return struct.unpack("<Q", data[offset + 1 : offset + 9])[0], offset + 9


@dataclass
class RawOutput:
    value: int
    scriptpubkey: str


@dataclass
class RawTransaction:
    txid: str
    outputs: list[RawOutput]
    has_witness: bool


def parse_transaction(tx_hex: str) -> RawTransaction:
    """
    Parse a raw transaction, SegWit or legacy.

    The txid is the double SHA256 of the serialization without marker,
    flag and witnesses.

    Raises:
        ValueError: if the hex is not a well-formed transaction
    """
    try:
        tx = bytes.fromhex(tx_hex)
        offset = 4
        has_witness = tx[offset] == 0x00 and tx[offset + 1] == 0x01
        if has_witness:
            offset += 2

        body_start = offset
        input_count, offset = decode_varint(tx, offset)
        for _ in range(input_count):
            offset += 36
            script_len, offset = decode_varint(tx, offset)
            offset += script_len + 4

        output_count, offset = decode_varint(tx, offset)
        outputs = []
        for _ in range(output_count):
            value = struct.unpack("<Q", tx[offset : offset + 8])[0]
            offset += 8
            script_len, offset = decode_varint(tx, offset)
            script = tx[offset : offset + script_len]
            outputs.append(RawOutput(value=value, scriptpubkey=script.hex()))
            offset += script_len
        body_end = offset

        if has_witness:
            for _ in range(input_count):
                item_count, offset = decode_varint(tx, offset)
                for _ in range(item_count):
                    item_len, offset = decode_varint(tx, offset)
                    offset += item_len

        if len(tx) != offset + 4:
            raise ValueError(f"Unexpected transaction length {len(tx)}, parsed {offset + 4}")
    except (IndexError, struct.error) as e:
        raise ValueError(f"Truncated transaction: {e}") from e

    stripped = tx[:4] + tx[body_start:body_end] + tx[-4:]
    return RawTransaction(
        txid=hash256(stripped)[::-1].hex(),
        outputs=outputs,
        has_witness=has_witness,
    )


def looks_like_raw_transaction(value: str) -> bool:
    """Heuristic used by the CLI: a txid is 64 hex chars, a raw tx is far longer."""
    return bool(RAW_TX_INPUT_PATTERN.match(value))
