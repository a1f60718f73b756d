"""
Nonce and cancellation registry.

An offer is live only while its embedded nonce equals the maker's current
nonce and its salt has been neither cancelled nor consumed.
"""

import logging
from typing import Dict, Iterable, Set, Tuple, Any

from .errors import OfferUnavailable

logger = logging.getLogger(__name__)


class NonceRegistry:
    """Per-account nonces and cancelled/consumed salts"""

    def __init__(self):
        self._nonces: Dict[str, int] = {}
        self._cancelled: Dict[str, Set[int]] = {}

    @staticmethod
    def _key(account: str) -> str:
        return account.lower()

    def nonce(self, account: str) -> int:
        return self._nonces.get(self._key(account), 0)

    def increment_nonce(self, account: str) -> int:
        """Invalidate every outstanding offer signed under the current nonce"""
        key = self._key(account)
        self._nonces[key] = self._nonces.get(key, 0) + 1
        logger.info(f"Nonce for {account} incremented to {self._nonces[key]}")
        return self._nonces[key]

    def cancel_offers(self, account: str, salts: Iterable[int]) -> None:
        cancelled = self._cancelled.setdefault(self._key(account), set())
        for salt in salts:
            cancelled.add(salt)
            logger.info(f"Offer salt {salt} cancelled for {account}")

    def is_cancelled(self, account: str, salt: int) -> bool:
        return salt in self._cancelled.get(self._key(account), ())

    def is_live(self, account: str, nonce: int, salt: int) -> bool:
        return nonce == self.nonce(account) and not self.is_cancelled(account, salt)

    def check_live(self, account: str, nonce: int, salt: int) -> None:
        if nonce != self.nonce(account):
            raise OfferUnavailable(f"Offer nonce {nonce} is stale for {account}")
        if self.is_cancelled(account, salt):
            raise OfferUnavailable(f"Offer salt {salt} is cancelled or already used")

    def consume(self, account: str, salt: int) -> None:
        """Mark a single-use offer as taken"""
        self.check_live(account, self.nonce(account), salt)
        self._cancelled.setdefault(self._key(account), set()).add(salt)

    def snapshot(self) -> Tuple[Any, ...]:
        return dict(self._nonces), {k: set(v) for k, v in self._cancelled.items()}

    def restore(self, state: Tuple[Any, ...]) -> None:
        self._nonces, self._cancelled = state
