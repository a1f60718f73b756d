"""
Kettle Lending Protocol

Peer-to-peer collateralized lending: signed offers, authorizer-issued
OfferAuths, Merkle collateral criteria and the lien lifecycle.
"""

from .types import (
    CollateralType,
    LienStatus,
    EventType,
    RATE_SCALE,
    SECONDS_PER_YEAR,
)

from .errors import (
    KettleError,
    AuthorizationError,
    LivenessError,
    StateConsistencyError,
    CollateralValidationError,
    EconomicBoundError,
    TimingError,
    ConfigurationError,
    LedgerError,
)

from .interfaces import (
    ICurrencyLedger,
    ICustodyLedger,
    IClock,
    IContractSignatureValidator,
    ILedger,
)

from .models import (
    Fee,
    LoanOffer,
    BorrowOffer,
    RenegotiationOffer,
    OfferAuth,
    Lien,
    SignedLoanOffer,
    SignedBorrowOffer,
    Fulfillment,
    RefinanceRequest,
    EscrowRegistration,
    ProtocolEvent,
)

from .config import ProtocolSettings, settings
from .calculations import interest_amount, repayment_amount, fee_amount, split_fees
from .criteria import MerkleTree, verify_collateral
from .hashing import hash_offer, hash_offer_auth, collateral_hash, lien_hash, typed_data
from .signatures import SignatureVerifier, sign_offer, sign_offer_auth
from .nonces import NonceRegistry
from .escrow import EscrowRegistry
from .ledger import InMemoryLedger
from .engine import LienEngine

__version__ = "1.0.0"

__all__ = [
    # Types
    "CollateralType",
    "LienStatus",
    "EventType",
    "RATE_SCALE",
    "SECONDS_PER_YEAR",

    # Errors
    "KettleError",
    "AuthorizationError",
    "LivenessError",
    "StateConsistencyError",
    "CollateralValidationError",
    "EconomicBoundError",
    "TimingError",
    "ConfigurationError",
    "LedgerError",

    # Interfaces
    "ICurrencyLedger",
    "ICustodyLedger",
    "IClock",
    "IContractSignatureValidator",
    "ILedger",

    # Models
    "Fee",
    "LoanOffer",
    "BorrowOffer",
    "RenegotiationOffer",
    "OfferAuth",
    "Lien",
    "SignedLoanOffer",
    "SignedBorrowOffer",
    "Fulfillment",
    "RefinanceRequest",
    "EscrowRegistration",
    "ProtocolEvent",

    # Configuration
    "ProtocolSettings",
    "settings",

    # Calculations & hashing
    "interest_amount",
    "repayment_amount",
    "fee_amount",
    "split_fees",
    "MerkleTree",
    "verify_collateral",
    "hash_offer",
    "hash_offer_auth",
    "collateral_hash",
    "lien_hash",
    "typed_data",

    # Signatures
    "SignatureVerifier",
    "sign_offer",
    "sign_offer_auth",

    # Registries, ledger & engine
    "NonceRegistry",
    "EscrowRegistry",
    "InMemoryLedger",
    "LienEngine",
]
