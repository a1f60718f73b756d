"""
Core data models: offers, authorizations, liens and events.
"""

from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass, field

from .types import CollateralType, EventType, ZERO_HASH


@dataclass(frozen=True)
class Fee:
    """Fee entry embedded in an offer"""
    rate: int  # parts-per-million of principal
    recipient: str


@dataclass(frozen=True)
class LoanOffer:
    """Lender-signed offer; multi-fill up to total_amount"""
    lender: str
    collection: str
    collateral_type: CollateralType
    identifier: int  # token id, or Merkle root for criteria types
    size: int
    currency: str
    total_amount: int
    min_amount: int
    max_amount: int
    duration: int  # seconds
    rate: int  # parts-per-million per year
    expiration: int
    salt: int
    nonce: int = 0
    fees: Tuple[Fee, ...] = ()


@dataclass(frozen=True)
class BorrowOffer:
    """Borrower-signed offer for one fixed amount against one named asset"""
    borrower: str
    collection: str
    collateral_type: CollateralType
    token_id: int
    size: int
    currency: str
    amount: int
    duration: int
    rate: int
    expiration: int
    salt: int
    nonce: int = 0
    fees: Tuple[Fee, ...] = ()


@dataclass(frozen=True)
class RenegotiationOffer:
    """Lender-signed proposal of new terms for an open lien"""
    lender: str
    lien_id: int
    new_duration: int
    new_rate: int
    expiration: int
    salt: int
    lien_hash: bytes = ZERO_HASH  # zero leaves the offer unpinned
    nonce: int = 0
    fees: Tuple[Fee, ...] = ()


@dataclass(frozen=True)
class OfferAuth:
    """Authorizer signature payload binding offer, taker and collateral"""
    offer_hash: bytes
    taker: str
    expiration: int
    collateral_hash: bytes


@dataclass(frozen=True)
class Lien:
    """Funded loan position"""
    offer_hash: bytes
    lender: str
    borrower: str
    collateral_type: CollateralType
    collection: str
    token_id: int
    size: int
    currency: str
    amount: int
    duration: int
    rate: int
    start_time: int

    @property
    def end_time(self) -> int:
        """Nominal end of term, excluding any grace period"""
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "offerHash": "0x" + self.offer_hash.hex(),
            "lender": self.lender,
            "borrower": self.borrower,
            "collateralType": int(self.collateral_type),
            "collection": self.collection,
            "tokenId": self.token_id,
            "size": self.size,
            "currency": self.currency,
            "amount": self.amount,
            "duration": self.duration,
            "rate": self.rate,
            "startTime": self.start_time,
        }


@dataclass(frozen=True)
class SignedLoanOffer:
    """Loan offer with its maker signature, as passed to batch origination"""
    offer: LoanOffer
    signature: bytes


@dataclass(frozen=True)
class Fulfillment:
    """One draw against an entry of a signed loan offer list"""
    offer_index: int
    amount: int
    token_id: int
    auth: OfferAuth
    auth_signature: bytes
    proof: Tuple[bytes, ...] = ()


@dataclass(frozen=True)
class SignedBorrowOffer:
    """Borrow offer with maker and authorizer signatures"""
    offer: BorrowOffer
    auth: OfferAuth
    offer_signature: bytes
    auth_signature: bytes


@dataclass(frozen=True)
class RefinanceRequest:
    """One entry of a batch refinance"""
    lien_id: int
    offer: LoanOffer
    auth: OfferAuth
    offer_signature: bytes
    auth_signature: bytes
    amount: int
    proof: Tuple[bytes, ...] = ()


@dataclass(frozen=True)
class EscrowRegistration:
    """Configured custody for a collection; custodian None means self-custody"""
    custodian: Optional[str] = None


@dataclass
class ProtocolEvent:
    """Record of a committed state change"""
    event_type: EventType
    args: Dict[str, Any]
    timestamp: int
    lien_id: Optional[int] = None
    sequence: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
