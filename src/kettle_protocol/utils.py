"""
Utility functions for addresses and hashes.
"""

import secrets
from typing import Union

from eth_utils import to_checksum_address, is_address, to_bytes

from .types import ZERO_ADDRESS


def validate_address(address: str) -> bool:
    """Validate EVM address format"""
    return isinstance(address, str) and is_address(address)


def normalize_address(address: str) -> str:
    """Normalize address to checksum format"""
    if not validate_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(address)


def same_address(a: str, b: str) -> bool:
    """Case-insensitive address comparison"""
    return a.lower() == b.lower()


def is_zero_address(address: str) -> bool:
    return same_address(address, ZERO_ADDRESS)


def to_bytes32(value: Union[bytes, str, int]) -> bytes:
    """Left-pad a hash-like value to 32 bytes"""
    if isinstance(value, int):
        raw = value.to_bytes(32, "big")
    elif isinstance(value, str):
        raw = to_bytes(hexstr=value)
    else:
        raw = bytes(value)
    if len(raw) > 32:
        raise ValueError(f"Value does not fit in 32 bytes: {len(raw)} bytes")
    return raw.rjust(32, b"\x00")


def random_salt() -> int:
    """Random 256-bit offer salt"""
    return secrets.randbits(256)

