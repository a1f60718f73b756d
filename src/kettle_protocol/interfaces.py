"""
Interfaces (protocols) for the external collaborators of the lien engine.
Using Python's Protocol for structural subtyping.
"""

from typing import Protocol, ContextManager
from abc import abstractmethod

from .types import CollateralType


class ICurrencyLedger(Protocol):
    """Fungible currency movements"""

    @abstractmethod
    def transfer(self, currency: str, from_address: str, to_address: str, amount: int) -> None:
        """Move currency; raises InsufficientFunds or Unapproved"""
        ...


class ICustodyLedger(Protocol):
    """Custody movements of pledged assets"""

    @abstractmethod
    def transfer_custody(self, collateral_type: CollateralType, collection: str, token_id: int,
                         size: int, from_address: str, to_address: str) -> None:
        """Move custody of an asset; raises NotOwner or Unapproved"""
        ...


class IClock(Protocol):
    """Ledger-defined time"""

    @abstractmethod
    def now(self) -> int:
        """Current timestamp in seconds"""
        ...


class IContractSignatureValidator(Protocol):
    """ERC-1271 style validation for contract signers"""

    @abstractmethod
    def is_valid_signature(self, signer: str, digest: bytes, signature: bytes) -> bool:
        """Whether the contract at signer accepts signature over digest"""
        ...


class ILedger(ICurrencyLedger, ICustodyLedger, IClock, Protocol):
    """Ledger providing serialized, all-or-nothing execution"""

    @abstractmethod
    def atomic(self) -> ContextManager[None]:
        """Scope whose transfers are reverted if it exits with an exception"""
        ...
