"""
Payout address resolution for worker keys.

Miners may log in with a raw 20-byte key hash (40 hex characters) instead of
an address. Those are turned into base58check addresses that share the pool
address' version byte.
"""

import string
from typing import Optional

import base58
import structlog


logger = structlog.get_logger(__name__)

KEY_HASH_HEX_LENGTH = 40


def _is_key_hash(value: str) -> bool:
    return len(value) == KEY_HASH_HEX_LENGTH and all(ch in string.hexdigits for ch in value)


def address_from_key_hash(pool_address: str, key_hash_hex: str) -> Optional[str]:
    """
    Build a base58check address from a key hash using the pool address' version byte.

    Returns:
        Address string, or None if the pool address or key hash cannot be decoded
    """
    try:
        version = base58.b58decode_check(pool_address)[:1]
        payload = version + bytes.fromhex(key_hash_hex)
    except ValueError as e:
        logger.warning("Cannot derive address from key hash", key_hash=key_hash_hex, error=str(e))
        return None
    return base58.b58encode_check(payload).decode("ascii")


class AddressResolver:
    """Maps worker keys to payout addresses for one pool."""

    def __init__(self, pool_address: str):
        self.pool_address = pool_address

    def resolve(self, worker: str) -> Optional[str]:
        if _is_key_hash(worker):
            return address_from_key_hash(self.pool_address, worker)
        return worker
