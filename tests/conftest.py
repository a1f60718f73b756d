"""
Pytest configuration for lending protocol tests
"""

from typing import Optional, Sequence, Tuple

import pytest
from eth_account import Account
from eth_utils import to_checksum_address

from kettle_protocol.config import ProtocolSettings
from kettle_protocol.engine import LienEngine
from kettle_protocol.hashing import collateral_hash, hash_offer
from kettle_protocol.ledger import InMemoryLedger
from kettle_protocol.models import (
    LoanOffer,
    BorrowOffer,
    RenegotiationOffer,
    OfferAuth,
    Fulfillment,
    Lien,
)
from kettle_protocol.signatures import offer_maker, sign_offer, sign_offer_auth
from kettle_protocol.types import CollateralType
from kettle_protocol.utils import random_salt


START = 1_700_000_000
DAY = 24 * 60 * 60
YEAR = 365 * DAY
FAR_FUTURE = START + 10 * YEAR
ETHER = 10 ** 18
MAX_UINT256 = 2 ** 256 - 1

# Deterministic test accounts
LENDER = Account.from_key("0x" + "11" * 32)
BORROWER = Account.from_key("0x" + "22" * 32)
AUTH = Account.from_key("0x" + "33" * 32)
OWNER = Account.from_key("0x" + "44" * 32)
OTHER_LENDER = Account.from_key("0x" + "55" * 32)
THIRD_PARTY = Account.from_key("0x" + "66" * 32)

ACCOUNTS = {
    account.address.lower(): account
    for account in (LENDER, BORROWER, AUTH, OWNER, OTHER_LENDER, THIRD_PARTY)
}

COLLECTION = to_checksum_address("0x" + "c1" * 20)
MULTI_COLLECTION = to_checksum_address("0x" + "c2" * 20)
UNREGISTERED_COLLECTION = to_checksum_address("0x" + "c3" * 20)
CURRENCY = to_checksum_address("0x" + "e1" * 20)
OTHER_CURRENCY = to_checksum_address("0x" + "e2" * 20)
FEE_RECIPIENT = to_checksum_address("0x" + "fe" * 20)
CUSTODIAN = to_checksum_address("0x" + "ed" * 20)
CONTRACT_WALLET = to_checksum_address("0x" + "cc" * 20)

MULTI_TOKEN_ID = 7


class Market:
    """Builds, signs and submits offers against one engine"""

    def __init__(self, engine: LienEngine, ledger: InMemoryLedger):
        self.engine = engine
        self.ledger = ledger
        self.domain = engine.verifier.domain
        self.auth_account = AUTH

    def sign(self, payload, account=None) -> bytes:
        if isinstance(payload, OfferAuth):
            return sign_offer_auth(self.domain, payload, (account or self.auth_account).key)
        account = account or ACCOUNTS[offer_maker(payload).lower()]
        return sign_offer(self.domain, payload, account.key)

    def loan_offer(self, **overrides) -> LoanOffer:
        fields = dict(
            lender=LENDER.address,
            collection=COLLECTION,
            collateral_type=CollateralType.ERC721,
            identifier=1,
            size=1,
            currency=CURRENCY,
            total_amount=10 * ETHER,
            min_amount=ETHER,
            max_amount=10 * ETHER,
            duration=YEAR,
            rate=100_000,
            expiration=FAR_FUTURE,
            salt=random_salt(),
            nonce=0,
            fees=(),
        )
        fields.update(overrides)
        return LoanOffer(**fields)

    def borrow_offer(self, **overrides) -> BorrowOffer:
        fields = dict(
            borrower=BORROWER.address,
            collection=COLLECTION,
            collateral_type=CollateralType.ERC721,
            token_id=1,
            size=1,
            currency=CURRENCY,
            amount=10 * ETHER,
            duration=YEAR,
            rate=100_000,
            expiration=FAR_FUTURE,
            salt=random_salt(),
            nonce=0,
            fees=(),
        )
        fields.update(overrides)
        return BorrowOffer(**fields)

    def renegotiation_offer(self, lien_id: int, **overrides) -> RenegotiationOffer:
        fields = dict(
            lender=self.engine.get_lien(lien_id).lender,
            lien_id=lien_id,
            new_duration=2 * YEAR,
            new_rate=50_000,
            expiration=FAR_FUTURE,
            salt=random_salt(),
        )
        fields.update(overrides)
        return RenegotiationOffer(**fields)

    def authorize(self, offer, taker: str, collateral_type: CollateralType, collection: str,
                  token_id: int, size: int = 1, expiration: int = FAR_FUTURE,
                  account=None) -> Tuple[OfferAuth, bytes]:
        auth = OfferAuth(
            offer_hash=hash_offer(offer),
            taker=taker,
            expiration=expiration,
            collateral_hash=collateral_hash(CollateralType(collateral_type).base, collection, token_id, size),
        )
        return auth, self.sign(auth, account)

    def authorize_lien(self, offer, lien: Lien, taker: Optional[str] = None, **kwargs) -> Tuple[OfferAuth, bytes]:
        return self.authorize(
            offer, taker or lien.borrower, lien.collateral_type, lien.collection,
            lien.token_id, lien.size, **kwargs
        )

    @staticmethod
    def presented_size(offer: LoanOffer) -> int:
        return offer.size if CollateralType(offer.collateral_type).is_countable else 1

    def borrow(self, offer: Optional[LoanOffer] = None, token_id: int = 1, amount: Optional[int] = None,
               caller: str = BORROWER.address, on_behalf_of: Optional[str] = None,
               proof: Sequence[bytes] = ()) -> int:
        offer = offer or self.loan_offer()
        auth, auth_signature = self.authorize(
            offer, caller, offer.collateral_type, offer.collection, token_id, self.presented_size(offer)
        )
        return self.engine.borrow(
            caller, offer, auth, self.sign(offer), auth_signature,
            amount if amount is not None else offer.max_amount, token_id,
            on_behalf_of=on_behalf_of, proof=proof,
        )

    def fulfillment(self, offer_index: int, offer: LoanOffer, token_id: int, amount: int,
                    caller: str = BORROWER.address, proof: Sequence[bytes] = ()) -> Fulfillment:
        auth, auth_signature = self.authorize(
            offer, caller, offer.collateral_type, offer.collection, token_id, self.presented_size(offer)
        )
        return Fulfillment(
            offer_index=offer_index,
            amount=amount,
            token_id=token_id,
            auth=auth,
            auth_signature=auth_signature,
            proof=tuple(proof),
        )

    def loan(self, offer: Optional[BorrowOffer] = None, caller: str = LENDER.address) -> int:
        offer = offer or self.borrow_offer()
        auth, auth_signature = self.authorize(
            offer, caller, offer.collateral_type, offer.collection, offer.token_id, offer.size
        )
        return self.engine.loan(caller, offer, auth, self.sign(offer), auth_signature)

    def refinance(self, lien_id: int, offer: LoanOffer, amount: Optional[int] = None,
                  caller: str = BORROWER.address, proof: Sequence[bytes] = ()) -> int:
        lien = self.engine.get_lien(lien_id)
        auth, auth_signature = self.authorize_lien(offer, lien, taker=caller)
        return self.engine.refinance(
            caller, lien_id, offer, auth, self.sign(offer), auth_signature,
            amount if amount is not None else offer.max_amount, proof,
        )

    def renegotiate(self, lien_id: int, offer: Optional[RenegotiationOffer] = None,
                    caller: str = BORROWER.address) -> Lien:
        offer = offer or self.renegotiation_offer(lien_id)
        lien = self.engine.get_lien(lien_id)
        auth, auth_signature = self.authorize_lien(offer, lien, taker=caller)
        return self.engine.renegotiate(caller, lien_id, offer, auth, self.sign(offer), auth_signature)


@pytest.fixture
def settings():
    """Protocol settings with the default deployment domain"""
    return ProtocolSettings()


@pytest.fixture
def ledger(settings):
    """Funded ledger with collateral minted to the borrower"""
    ledger = InMemoryLedger(operator=settings.verifying_contract, start_time=START)

    for account in (LENDER, OTHER_LENDER, BORROWER, THIRD_PARTY):
        ledger.mint(CURRENCY, account.address, 100 * ETHER)
        ledger.mint(OTHER_CURRENCY, account.address, 100 * ETHER)
        ledger.approve(CURRENCY, account.address, ledger.operator, MAX_UINT256)
        ledger.approve(OTHER_CURRENCY, account.address, ledger.operator, MAX_UINT256)

    for token_id in (1, 2, 3, 4):
        ledger.mint_token(COLLECTION, token_id, BORROWER.address)
    ledger.mint_token(UNREGISTERED_COLLECTION, 1, BORROWER.address)
    ledger.mint_token(MULTI_COLLECTION, MULTI_TOKEN_ID, BORROWER.address, size=10, countable=True)

    for account in (BORROWER, THIRD_PARTY):
        for collection in (COLLECTION, MULTI_COLLECTION, UNREGISTERED_COLLECTION):
            ledger.set_approval_for_all(collection, account.address, ledger.operator)

    return ledger


@pytest.fixture
def engine(ledger, settings):
    """Engine with both test collections registered for self-custody"""
    engine = LienEngine(
        ledger,
        owner=OWNER.address,
        auth_signer=AUTH.address,
        settings=settings,
        contract_validator=ledger,
    )
    engine.set_escrow(OWNER.address, COLLECTION)
    engine.set_escrow(OWNER.address, MULTI_COLLECTION)
    return engine


@pytest.fixture
def market(engine, ledger):
    return Market(engine, ledger)


@pytest.fixture
def contract_wallet(ledger):
    """Contract wallet owned by the lender key, funded and approved like an account"""
    ledger.register_contract_wallet(CONTRACT_WALLET, LENDER.address)
    ledger.mint(CURRENCY, CONTRACT_WALLET, 100 * ETHER)
    ledger.approve(CURRENCY, CONTRACT_WALLET, ledger.operator, MAX_UINT256)
    ledger.mint_token(COLLECTION, 5, CONTRACT_WALLET)
    ledger.set_approval_for_all(COLLECTION, CONTRACT_WALLET, ledger.operator)
    return CONTRACT_WALLET
