"""
EVM adapter providing the chain-backed capabilities of the lien engine:
ERC-1271 signature validation for contract signers and block time.
"""

import logging
from typing import Optional

from eth_abi import encode
from web3 import Web3

from ..types import ERC1271_MAGIC_VALUE
from ..utils import normalize_address
from .base import BaseAdapter, ChainConfig

logger = logging.getLogger(__name__)

IS_VALID_SIGNATURE_SELECTOR = ERC1271_MAGIC_VALUE  # selector doubles as the magic value


class EVMAdapter(BaseAdapter):
    """Adapter for EVM-compatible chains"""

    def __init__(self, config: ChainConfig):
        super().__init__(config)
        self.w3: Optional[Web3] = None

    def connect(self) -> bool:
        """Connect to the EVM chain"""
        try:
            provider = Web3.HTTPProvider(
                self.config.rpc_url,
                request_kwargs={"timeout": self.config.request_timeout},
            )
            self.w3 = Web3(provider)

            if self.w3.is_connected():
                chain_id = self.w3.eth.chain_id
                if chain_id != self.config.chain_id:
                    logger.warning(f"Chain ID mismatch: expected {self.config.chain_id}, got {chain_id}")

                self._connected = True
                logger.info(f"Connected to chain {self.config.chain_id} at {self.config.rpc_url}")
                return True
            else:
                logger.error(f"Failed to connect to {self.config.rpc_url}")
                return False

        except Exception as e:
            logger.error(f"Error connecting to {self.config.rpc_url}: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from the chain"""
        if self.w3 and hasattr(self.w3.provider, "disconnect"):
            self.w3.provider.disconnect()
        self._connected = False
        logger.info(f"Disconnected from {self.config.rpc_url}")

    def get_block_number(self) -> Optional[int]:
        self._require_connection()
        return self.w3.eth.block_number

    def now(self) -> int:
        """Timestamp of the latest block"""
        self._require_connection()
        return int(self.w3.eth.get_block("latest")["timestamp"])

    def is_valid_signature(self, signer: str, digest: bytes, signature: bytes) -> bool:
        """
        Ask a contract signer whether it accepts a signature (ERC-1271).

        Accounts without code, reverting calls and any return value other than
        the magic value all count as rejection.
        """
        self._require_connection()
        signer = normalize_address(signer)

        if not self.w3.eth.get_code(signer):
            return False

        call_data = IS_VALID_SIGNATURE_SELECTOR + encode(["bytes32", "bytes"], [digest, signature])
        try:
            result = self.w3.eth.call({"to": signer, "data": "0x" + call_data.hex()})
        except Exception as e:
            logger.debug(f"isValidSignature call to {signer} failed: {e}")
            return False

        return bytes(result[:4]) == ERC1271_MAGIC_VALUE
