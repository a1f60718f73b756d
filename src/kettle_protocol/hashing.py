"""
EIP-712 structural hashing for offers, authorizations, collateral and liens.

Struct hashes follow the typed structured data standard so that any wallet
producing `eth_signTypedData_v4` signatures over `typed_data(...)` payloads
signs exactly the digests verified here.
"""

from typing import Dict, Any, List, Sequence

from eth_abi import encode
from eth_utils import keccak

from .models import Fee, LoanOffer, BorrowOffer, RenegotiationOffer, OfferAuth, Lien
from .types import CollateralType
from .utils import to_bytes32


DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
FEE_TYPE = "Fee(uint256 rate,address recipient)"
LOAN_OFFER_TYPE = (
    "LoanOffer(address lender,address collection,uint8 collateralType,uint256 identifier,"
    "uint256 size,address currency,uint256 totalAmount,uint256 minAmount,uint256 maxAmount,"
    "uint256 duration,uint256 rate,uint256 expiration,uint256 salt,uint256 nonce,Fee[] fees)"
) + FEE_TYPE
BORROW_OFFER_TYPE = (
    "BorrowOffer(address borrower,address collection,uint8 collateralType,uint256 tokenId,"
    "uint256 size,address currency,uint256 amount,uint256 duration,uint256 rate,"
    "uint256 expiration,uint256 salt,uint256 nonce,Fee[] fees)"
) + FEE_TYPE
RENEGOTIATION_OFFER_TYPE = (
    "RenegotiationOffer(address lender,uint256 lienId,bytes32 lienHash,uint256 newDuration,"
    "uint256 newRate,uint256 expiration,uint256 salt,uint256 nonce,Fee[] fees)"
) + FEE_TYPE
OFFER_AUTH_TYPE = "OfferAuth(bytes32 offerHash,address taker,uint256 expiration,bytes32 collateralHash)"

DOMAIN_TYPEHASH = keccak(text=DOMAIN_TYPE)
FEE_TYPEHASH = keccak(text=FEE_TYPE)
LOAN_OFFER_TYPEHASH = keccak(text=LOAN_OFFER_TYPE)
BORROW_OFFER_TYPEHASH = keccak(text=BORROW_OFFER_TYPE)
RENEGOTIATION_OFFER_TYPEHASH = keccak(text=RENEGOTIATION_OFFER_TYPE)
OFFER_AUTH_TYPEHASH = keccak(text=OFFER_AUTH_TYPE)

# Type definitions in the shape expected by eth_account.messages.encode_typed_data
EIP712_TYPES: Dict[str, List[Dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Fee": [
        {"name": "rate", "type": "uint256"},
        {"name": "recipient", "type": "address"},
    ],
    "LoanOffer": [
        {"name": "lender", "type": "address"},
        {"name": "collection", "type": "address"},
        {"name": "collateralType", "type": "uint8"},
        {"name": "identifier", "type": "uint256"},
        {"name": "size", "type": "uint256"},
        {"name": "currency", "type": "address"},
        {"name": "totalAmount", "type": "uint256"},
        {"name": "minAmount", "type": "uint256"},
        {"name": "maxAmount", "type": "uint256"},
        {"name": "duration", "type": "uint256"},
        {"name": "rate", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "salt", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "fees", "type": "Fee[]"},
    ],
    "BorrowOffer": [
        {"name": "borrower", "type": "address"},
        {"name": "collection", "type": "address"},
        {"name": "collateralType", "type": "uint8"},
        {"name": "tokenId", "type": "uint256"},
        {"name": "size", "type": "uint256"},
        {"name": "currency", "type": "address"},
        {"name": "amount", "type": "uint256"},
        {"name": "duration", "type": "uint256"},
        {"name": "rate", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "salt", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "fees", "type": "Fee[]"},
    ],
    "RenegotiationOffer": [
        {"name": "lender", "type": "address"},
        {"name": "lienId", "type": "uint256"},
        {"name": "lienHash", "type": "bytes32"},
        {"name": "newDuration", "type": "uint256"},
        {"name": "newRate", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "salt", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "fees", "type": "Fee[]"},
    ],
    "OfferAuth": [
        {"name": "offerHash", "type": "bytes32"},
        {"name": "taker", "type": "address"},
        {"name": "expiration", "type": "uint256"},
        {"name": "collateralHash", "type": "bytes32"},
    ],
}


def domain_separator(domain: Dict[str, Any]) -> bytes:
    """Hash of the EIP712Domain struct"""
    return keccak(encode(
        ["bytes32", "bytes32", "bytes32", "uint256", "address"],
        [
            DOMAIN_TYPEHASH,
            keccak(text=domain["name"]),
            keccak(text=domain["version"]),
            domain["chainId"],
            domain["verifyingContract"],
        ]
    ))


def hash_fee(fee: Fee) -> bytes:
    return keccak(encode(["bytes32", "uint256", "address"], [FEE_TYPEHASH, fee.rate, fee.recipient]))


def hash_fees(fees: Sequence[Fee]) -> bytes:
    """Array member hash: keccak of the concatenated element struct hashes"""
    return keccak(b"".join(hash_fee(fee) for fee in fees))


def hash_loan_offer(offer: LoanOffer) -> bytes:
    return keccak(encode(
        [
            "bytes32", "address", "address", "uint8", "uint256", "uint256", "address",
            "uint256", "uint256", "uint256", "uint256", "uint256", "uint256", "uint256",
            "uint256", "bytes32",
        ],
        [
            LOAN_OFFER_TYPEHASH,
            offer.lender,
            offer.collection,
            int(offer.collateral_type),
            offer.identifier,
            offer.size,
            offer.currency,
            offer.total_amount,
            offer.min_amount,
            offer.max_amount,
            offer.duration,
            offer.rate,
            offer.expiration,
            offer.salt,
            offer.nonce,
            hash_fees(offer.fees),
        ]
    ))


def hash_borrow_offer(offer: BorrowOffer) -> bytes:
    return keccak(encode(
        [
            "bytes32", "address", "address", "uint8", "uint256", "uint256", "address",
            "uint256", "uint256", "uint256", "uint256", "uint256", "uint256", "bytes32",
        ],
        [
            BORROW_OFFER_TYPEHASH,
            offer.borrower,
            offer.collection,
            int(offer.collateral_type),
            offer.token_id,
            offer.size,
            offer.currency,
            offer.amount,
            offer.duration,
            offer.rate,
            offer.expiration,
            offer.salt,
            offer.nonce,
            hash_fees(offer.fees),
        ]
    ))


def hash_renegotiation_offer(offer: RenegotiationOffer) -> bytes:
    return keccak(encode(
        [
            "bytes32", "address", "uint256", "bytes32", "uint256", "uint256",
            "uint256", "uint256", "uint256", "bytes32",
        ],
        [
            RENEGOTIATION_OFFER_TYPEHASH,
            offer.lender,
            offer.lien_id,
            to_bytes32(offer.lien_hash),
            offer.new_duration,
            offer.new_rate,
            offer.expiration,
            offer.salt,
            offer.nonce,
            hash_fees(offer.fees),
        ]
    ))


def hash_offer_auth(auth: OfferAuth) -> bytes:
    return keccak(encode(
        ["bytes32", "bytes32", "address", "uint256", "bytes32"],
        [
            OFFER_AUTH_TYPEHASH,
            to_bytes32(auth.offer_hash),
            auth.taker,
            auth.expiration,
            to_bytes32(auth.collateral_hash),
        ]
    ))


def hash_offer(offer) -> bytes:
    """Struct hash of any offer kind"""
    if isinstance(offer, LoanOffer):
        return hash_loan_offer(offer)
    if isinstance(offer, BorrowOffer):
        return hash_borrow_offer(offer)
    if isinstance(offer, RenegotiationOffer):
        return hash_renegotiation_offer(offer)
    raise TypeError(f"Unsupported offer type: {type(offer).__name__}")


def hash_to_sign(domain: Dict[str, Any], struct_hash: bytes) -> bytes:
    """Final EIP-712 digest"""
    return keccak(b"\x19\x01" + domain_separator(domain) + struct_hash)


def collateral_hash(collateral_type: CollateralType, collection: str, token_id: int, size: int) -> bytes:
    """Binds an authorization to one concrete collateral instance"""
    return keccak(encode(
        ["uint8", "address", "uint256", "uint256"],
        [int(collateral_type), collection, token_id, size]
    ))


def lien_hash(lien: Lien) -> bytes:
    """Content hash of a lien, used to pin renegotiation offers"""
    return keccak(encode(
        [
            "bytes32", "address", "address", "uint8", "address", "uint256", "uint256",
            "address", "uint256", "uint256", "uint256", "uint256",
        ],
        [
            lien.offer_hash,
            lien.lender,
            lien.borrower,
            int(lien.collateral_type),
            lien.collection,
            lien.token_id,
            lien.size,
            lien.currency,
            lien.amount,
            lien.duration,
            lien.rate,
            lien.start_time,
        ]
    ))


def _fees_message(fees: Sequence[Fee]) -> List[Dict[str, Any]]:
    return [{"rate": fee.rate, "recipient": fee.recipient} for fee in fees]


def offer_message(offer) -> Dict[str, Any]:
    """Typed-data message body of an offer"""
    if isinstance(offer, LoanOffer):
        return {
            "lender": offer.lender,
            "collection": offer.collection,
            "collateralType": int(offer.collateral_type),
            "identifier": offer.identifier,
            "size": offer.size,
            "currency": offer.currency,
            "totalAmount": offer.total_amount,
            "minAmount": offer.min_amount,
            "maxAmount": offer.max_amount,
            "duration": offer.duration,
            "rate": offer.rate,
            "expiration": offer.expiration,
            "salt": offer.salt,
            "nonce": offer.nonce,
            "fees": _fees_message(offer.fees),
        }
    if isinstance(offer, BorrowOffer):
        return {
            "borrower": offer.borrower,
            "collection": offer.collection,
            "collateralType": int(offer.collateral_type),
            "tokenId": offer.token_id,
            "size": offer.size,
            "currency": offer.currency,
            "amount": offer.amount,
            "duration": offer.duration,
            "rate": offer.rate,
            "expiration": offer.expiration,
            "salt": offer.salt,
            "nonce": offer.nonce,
            "fees": _fees_message(offer.fees),
        }
    if isinstance(offer, RenegotiationOffer):
        return {
            "lender": offer.lender,
            "lienId": offer.lien_id,
            "lienHash": to_bytes32(offer.lien_hash),
            "newDuration": offer.new_duration,
            "newRate": offer.new_rate,
            "expiration": offer.expiration,
            "salt": offer.salt,
            "nonce": offer.nonce,
            "fees": _fees_message(offer.fees),
        }
    if isinstance(offer, OfferAuth):
        return {
            "offerHash": to_bytes32(offer.offer_hash),
            "taker": offer.taker,
            "expiration": offer.expiration,
            "collateralHash": to_bytes32(offer.collateral_hash),
        }
    raise TypeError(f"Unsupported payload type: {type(offer).__name__}")


def typed_data(domain: Dict[str, Any], payload) -> Dict[str, Any]:
    """Full typed-data document for wallet signing"""
    primary_type = type(payload).__name__
    types = {"EIP712Domain": EIP712_TYPES["EIP712Domain"], primary_type: EIP712_TYPES[primary_type]}
    if primary_type != "OfferAuth":
        types["Fee"] = EIP712_TYPES["Fee"]
    return {
        "types": types,
        "primaryType": primary_type,
        "domain": dict(domain),
        "message": offer_message(payload),
    }
