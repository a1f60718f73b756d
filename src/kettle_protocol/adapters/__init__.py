"""
Chain adapter implementations.
"""

from .base import BaseAdapter, ChainConfig
from .evm import EVMAdapter

__all__ = [
    "BaseAdapter",
    "ChainConfig",
    "EVMAdapter",
]
