"""
Signature & domain verification.

Two signer variants are supported: externally owned accounts, whose address
is recovered from the ECDSA signature over the EIP-712 digest, and
contract-style signers, validated by delegating to their own ERC-1271
`isValidSignature` capability.
"""

import logging
from typing import Optional, Dict, Any, Union

from eth_account import Account
from eth_account.messages import SignableMessage
from eth_utils import keccak

from .errors import InvalidSignature
from .hashing import domain_separator, hash_offer, hash_offer_auth
from .interfaces import IContractSignatureValidator
from .models import LoanOffer, BorrowOffer, RenegotiationOffer, OfferAuth
from .utils import same_address

logger = logging.getLogger(__name__)

Offer = Union[LoanOffer, BorrowOffer, RenegotiationOffer]


def offer_maker(offer: Offer) -> str:
    """Address expected to have signed an offer"""
    if isinstance(offer, BorrowOffer):
        return offer.borrower
    return offer.lender


def _signable(domain: Dict[str, Any], struct_hash: bytes) -> SignableMessage:
    return SignableMessage(
        version=b"\x01",
        header=domain_separator(domain),
        body=struct_hash,
    )


def sign_struct_hash(domain: Dict[str, Any], struct_hash: bytes, private_key) -> bytes:
    """Sign a struct hash under the protocol domain"""
    signed = Account.sign_message(_signable(domain, struct_hash), private_key)
    return bytes(signed.signature)


def sign_offer(domain: Dict[str, Any], offer: Offer, private_key) -> bytes:
    return sign_struct_hash(domain, hash_offer(offer), private_key)


def sign_offer_auth(domain: Dict[str, Any], auth: OfferAuth, private_key) -> bytes:
    return sign_struct_hash(domain, hash_offer_auth(auth), private_key)


class SignatureVerifier:
    """Verifies maker and authorizer signatures for one deployment domain"""

    def __init__(self, domain: Dict[str, Any],
                 contract_validator: Optional[IContractSignatureValidator] = None):
        self.domain = dict(domain)
        self.contract_validator = contract_validator
        self._domain_separator = domain_separator(self.domain)

    @property
    def domain_separator(self) -> bytes:
        return self._domain_separator

    def digest(self, struct_hash: bytes) -> bytes:
        """EIP-712 digest a signer commits to"""
        return keccak(b"\x19\x01" + self._domain_separator + struct_hash)

    def recover(self, struct_hash: bytes, signature: bytes) -> Optional[str]:
        """Recover the externally owned signer, or None for non-ECDSA signatures"""
        try:
            return Account.recover_message(_signable(self.domain, struct_hash), signature=signature)
        except Exception as e:
            logger.debug(f"ECDSA recovery failed: {e}")
            return None

    def is_valid(self, signer: str, struct_hash: bytes, signature: bytes) -> bool:
        recovered = self.recover(struct_hash, signature)
        if recovered is not None and same_address(recovered, signer):
            return True

        if self.contract_validator is not None:
            return bool(self.contract_validator.is_valid_signature(
                signer, self.digest(struct_hash), signature
            ))
        return False

    def verify(self, signer: str, struct_hash: bytes, signature: bytes) -> None:
        """Raise InvalidSignature unless signer signed struct_hash"""
        if not self.is_valid(signer, struct_hash, signature):
            raise InvalidSignature(f"Signature does not validate for {signer}")

    def verify_offer(self, offer: Offer, signature: bytes) -> bytes:
        """Verify the maker signature and return the offer hash"""
        offer_hash = hash_offer(offer)
        self.verify(offer_maker(offer), offer_hash, signature)
        return offer_hash

    def verify_auth(self, auth: OfferAuth, signature: bytes, auth_signer: str) -> None:
        self.verify(auth_signer, hash_offer_auth(auth), signature)
