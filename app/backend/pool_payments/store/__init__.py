"""
Redis access for the payment pipeline.
"""

from .keys import PoolKeys, decode_round_token, encode_round_token
from .redis_client import RedisClient

__all__ = [
    "PoolKeys",
    "RedisClient",
    "decode_round_token",
    "encode_round_token",
]
