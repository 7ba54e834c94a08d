"""
Token identifier decoding.

Token identifiers are shown to users as bech32m strings (``btkn1...``);
older tooling produced plain bech32. The AMM indexes pools by the
underlying 33-byte public key in hex, so every identifier is decoded to
that canonical form before pool discovery.

Uses the ``bech32`` reference library for the checksum polynomial and
bit conversion.
"""

from __future__ import annotations

import re

import bech32 as bech32_lib

TOKEN_HRP_PREFIX = "btkn"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3
BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

POOL_ID_PATTERN = re.compile(r"^0[23][0-9a-fA-F]{64}$")
PUBKEY_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]{66}$")


def is_pool_id(value: str) -> bool:
    """Pool ids are compressed public keys: 66 hex chars starting 02 or 03."""
    return bool(POOL_ID_PATTERN.match(value))


def is_token_identifier(value: str) -> bool:
    return value.lower().startswith(TOKEN_HRP_PREFIX)


def _split(identifier: str) -> tuple[str, list[int]] | None:
    if identifier.lower() != identifier and identifier.upper() != identifier:
        return None
    identifier = identifier.lower()
    pos = identifier.rfind("1")
    if pos < 1 or pos + 7 > len(identifier):
        return None
    if any(c not in BECH32_CHARSET for c in identifier[pos + 1 :]):
        return None
    return identifier[:pos], [BECH32_CHARSET.find(c) for c in identifier[pos + 1 :]]


def decode_checksummed(identifier: str, constant: int) -> bytes | None:
    """Decode a bech32-family string whose checksum matches ``constant``."""
    parts = _split(identifier)
    if parts is None:
        return None
    hrp, data = parts
    if bech32_lib.bech32_polymod(bech32_lib.bech32_hrp_expand(hrp) + data) != constant:
        return None
    payload = bech32_lib.convertbits(data[:-6], 5, 8, False)
    if payload is None:
        return None
    return bytes(payload)


def token_identifier_to_hex(identifier: str) -> str | None:
    """
    Canonical lowercase hex of a token identifier.

    bech32m is tried first, then legacy bech32; a raw 66-char hex key is
    accepted as-is.
    """
    for constant in (BECH32M_CONST, BECH32_CONST):
        payload = decode_checksummed(identifier, constant)
        if payload is not None:
            return payload.hex()
    if PUBKEY_HEX_PATTERN.match(identifier):
        return identifier.lower()
    return None


def token_lookup_keys(identifier: str) -> list[str]:
    """
    Asset addresses under which pools for ``identifier`` may be indexed.

    Decoded hex (lower then upper case) first, then the identifier itself.
    """
    keys: list[str] = []
    decoded = token_identifier_to_hex(identifier)
    if decoded is not None:
        keys.extend([decoded, decoded.upper()])
    keys.append(identifier)
    return list(dict.fromkeys(keys))
