"""
Base adapter implementation with common functionality.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ChainConfig:
    """Connection settings for a chain backing the protocol"""
    rpc_url: str
    chain_id: int
    request_timeout: int = 10  # seconds


class BaseAdapter(ABC):
    """Base adapter with common functionality"""

    def __init__(self, config: ChainConfig):
        self.config = config
        self._chain_id = config.chain_id
        self._connected = False

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _require_connection(self) -> None:
        if not self._connected:
            raise ConnectionError("Not connected to blockchain")

    @abstractmethod
    def connect(self) -> bool:
        """Connect to the chain"""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the chain"""
        pass

    @abstractmethod
    def get_block_number(self) -> Optional[int]:
        """Latest block number"""
        pass
