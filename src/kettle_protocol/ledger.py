"""
In-memory reference ledger.

Implements the currency, custody, clock and contract-signature capabilities
the lien engine consumes, with snapshot-based atomic scopes. It plays the
role of the chain for simulations and tests; production deployments wire the
engine to a real ledger through the same interfaces.
"""

import copy
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple, Any

from eth_keys import keys

from .errors import InsufficientFunds, Unapproved, NotOwner
from .types import CollateralType
from .utils import normalize_address, same_address

logger = logging.getLogger(__name__)


def _k(address: str) -> str:
    return address.lower()


class InMemoryLedger:
    """Balances, asset ownership, approvals and time for one operator"""

    def __init__(self, operator: str, start_time: int = 1_700_000_000):
        self.operator = normalize_address(operator)
        self._time = start_time
        self._balances: Dict[Tuple[str, str], int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._owners: Dict[Tuple[str, int], str] = {}
        self._holdings: Dict[Tuple[str, int, str], int] = {}
        self._operator_approvals: Dict[Tuple[str, str, str], bool] = {}
        self._contract_wallets: Dict[str, str] = {}

    # Clock

    def now(self) -> int:
        return self._time

    def set_time(self, timestamp: int) -> None:
        if timestamp < self._time:
            raise ValueError("Ledger time is monotonic")
        self._time = timestamp

    def advance(self, seconds: int) -> int:
        self.set_time(self._time + seconds)
        return self._time

    # Currency

    def mint(self, currency: str, to_address: str, amount: int) -> None:
        key = (_k(currency), _k(to_address))
        self._balances[key] = self._balances.get(key, 0) + amount

    def balance_of(self, currency: str, account: str) -> int:
        return self._balances.get((_k(currency), _k(account)), 0)

    def approve(self, currency: str, owner: str, spender: str, amount: int) -> None:
        self._allowances[(_k(currency), _k(owner), _k(spender))] = amount

    def allowance(self, currency: str, owner: str, spender: str) -> int:
        return self._allowances.get((_k(currency), _k(owner), _k(spender)), 0)

    def transfer(self, currency: str, from_address: str, to_address: str, amount: int) -> None:
        """Move currency on behalf of the operator"""
        if amount < 0:
            raise ValueError("Transfer amount must not be negative")
        if amount == 0 or same_address(from_address, to_address):
            return

        if not same_address(from_address, self.operator):
            allowed = self.allowance(currency, from_address, self.operator)
            if allowed < amount:
                raise Unapproved(f"{from_address} has not approved {amount} of {currency}")
            self.approve(currency, from_address, self.operator, allowed - amount)

        balance = self.balance_of(currency, from_address)
        if balance < amount:
            raise InsufficientFunds(f"{from_address} holds {balance} of {currency}, needs {amount}")

        self._balances[(_k(currency), _k(from_address))] = balance - amount
        self.mint(currency, to_address, amount)
        logger.debug(f"Transferred {amount} of {currency} from {from_address} to {to_address}")

    # Custody

    def mint_token(self, collection: str, token_id: int, to_address: str, size: int = 1,
                   countable: bool = False) -> None:
        if countable:
            key = (_k(collection), token_id, _k(to_address))
            self._holdings[key] = self._holdings.get(key, 0) + size
        else:
            self._owners[(_k(collection), token_id)] = _k(to_address)

    def owner_of(self, collection: str, token_id: int) -> Optional[str]:
        owner = self._owners.get((_k(collection), token_id))
        return normalize_address(owner) if owner else None

    def token_balance(self, collection: str, token_id: int, account: str) -> int:
        return self._holdings.get((_k(collection), token_id, _k(account)), 0)

    def set_approval_for_all(self, collection: str, owner: str, operator: str, approved: bool = True) -> None:
        self._operator_approvals[(_k(collection), _k(owner), _k(operator))] = approved

    def is_approved_for_all(self, collection: str, owner: str, operator: str) -> bool:
        return self._operator_approvals.get((_k(collection), _k(owner), _k(operator)), False)

    def transfer_custody(self, collateral_type: CollateralType, collection: str, token_id: int,
                         size: int, from_address: str, to_address: str) -> None:
        """Move custody of an asset on behalf of the operator"""
        if same_address(from_address, to_address):
            return

        if not same_address(from_address, self.operator) and \
                not self.is_approved_for_all(collection, from_address, self.operator):
            raise Unapproved(f"{from_address} has not approved {collection} for the operator")

        if CollateralType(collateral_type).is_countable:
            held = self.token_balance(collection, token_id, from_address)
            if held < size:
                raise NotOwner(f"{from_address} holds {held} of token {token_id}, needs {size}")
            self._holdings[(_k(collection), token_id, _k(from_address))] = held - size
            self.mint_token(collection, token_id, to_address, size, countable=True)
        else:
            owner = self._owners.get((_k(collection), token_id))
            if owner != _k(from_address):
                raise NotOwner(f"{from_address} does not own token {token_id} of {collection}")
            self._owners[(_k(collection), token_id)] = _k(to_address)

        logger.debug(f"Custody of {collection}#{token_id} x{size} moved from {from_address} to {to_address}")

    # Contract signers

    def register_contract_wallet(self, wallet: str, owner: str) -> None:
        """Contract wallet accepting signatures produced by its owner key"""
        self._contract_wallets[_k(wallet)] = normalize_address(owner)

    def is_valid_signature(self, signer: str, digest: bytes, signature: bytes) -> bool:
        owner = self._contract_wallets.get(_k(signer))
        if owner is None or len(signature) != 65:
            return False

        v = signature[64]
        if v >= 27:
            v -= 27
        try:
            recovered = keys.Signature(signature[:64] + bytes([v])).recover_public_key_from_msg_hash(digest)
        except Exception as e:
            logger.debug(f"Contract wallet {signer} rejected signature: {e}")
            return False
        return same_address(recovered.to_checksum_address(), owner)

    # Atomicity

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy({
            "time": self._time,
            "balances": self._balances,
            "allowances": self._allowances,
            "owners": self._owners,
            "holdings": self._holdings,
            "operator_approvals": self._operator_approvals,
        })

    def restore(self, state: Dict[str, Any]) -> None:
        self._time = state["time"]
        self._balances = state["balances"]
        self._allowances = state["allowances"]
        self._owners = state["owners"]
        self._holdings = state["holdings"]
        self._operator_approvals = state["operator_approvals"]

    @contextmanager
    def atomic(self) -> Iterator[None]:
        state = self.snapshot()
        try:
            yield
        except BaseException:
            self.restore(state)
            logger.debug("Ledger scope reverted")
            raise
