"""
Core types and enums for lien lifecycle operations.
"""

from enum import Enum, IntEnum


RATE_SCALE = 1_000_000  # rates and fee rates are parts-per-million
SECONDS_PER_YEAR = 365 * 24 * 60 * 60

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = b"\x00" * 32

# bytes4(keccak256("isValidSignature(bytes32,bytes)"))
ERC1271_MAGIC_VALUE = bytes.fromhex("1626ba7e")


class CollateralType(IntEnum):
    """Collateral shapes accepted by offers"""
    ERC721 = 0
    ERC1155 = 1
    ERC721_WITH_CRITERIA = 2
    ERC1155_WITH_CRITERIA = 3

    @property
    def is_criteria(self) -> bool:
        return self in (CollateralType.ERC721_WITH_CRITERIA, CollateralType.ERC1155_WITH_CRITERIA)

    @property
    def is_countable(self) -> bool:
        return self in (CollateralType.ERC1155, CollateralType.ERC1155_WITH_CRITERIA)

    @property
    def base(self) -> "CollateralType":
        """Exact collateral type a criteria type resolves to once a token is chosen"""
        if self == CollateralType.ERC721_WITH_CRITERIA:
            return CollateralType.ERC721
        if self == CollateralType.ERC1155_WITH_CRITERIA:
            return CollateralType.ERC1155
        return self


class LienStatus(Enum):
    """Lien lifecycle states"""
    OPEN = "open"
    REPAID = "repaid"
    SEIZED = "seized"
    REFINANCED = "refinanced"


class EventType(Enum):
    """Records emitted by committed operations"""
    LOAN_OFFER_TAKEN = "LoanOfferTaken"
    REPAY = "Repay"
    SEIZE = "Seize"
    REFINANCE = "Refinance"
    RENEGOTIATE = "Renegotiate"
    NONCE_INCREMENTED = "NonceIncremented"
    OFFER_CANCELLED = "OfferCancelled"
    ESCROW_SET = "EscrowSet"
    AUTH_SIGNER_SET = "AuthSignerSet"
    GRACE_PERIOD_SET = "GracePeriodSet"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
