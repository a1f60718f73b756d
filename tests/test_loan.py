"""
Tests for funding borrower offers
"""

import pytest

from kettle_protocol.errors import InvalidCollateral, InvalidCollateralSize, OfferUnavailable, Unauthorized
from kettle_protocol.models import Fee, SignedBorrowOffer
from kettle_protocol.types import CollateralType, EventType

from conftest import (
    ETHER, LENDER, BORROWER, OTHER_LENDER, COLLECTION, MULTI_COLLECTION, MULTI_TOKEN_ID,
    CURRENCY, FEE_RECIPIENT,
)


class TestLoan:
    """Lender takes a borrower offer"""

    def test_opens_lien(self, market, engine, ledger):
        offer = market.borrow_offer()
        lien_id = market.loan(offer)

        lien = engine.get_lien(lien_id)
        assert lien.lender == LENDER.address
        assert lien.borrower == BORROWER.address
        assert lien.amount == offer.amount
        assert lien.offer_hash == engine.get_offer_hash(offer)

        assert ledger.owner_of(COLLECTION, 1) == engine.address
        assert ledger.balance_of(CURRENCY, BORROWER.address) == 110 * ETHER
        assert ledger.balance_of(CURRENCY, LENDER.address) == 90 * ETHER
        assert engine.events[-1].event_type == EventType.LOAN_OFFER_TAKEN

    def test_fees_paid_by_lender_out_of_principal(self, market, ledger):
        market.loan(market.borrow_offer(fees=(Fee(rate=100_000, recipient=FEE_RECIPIENT),)))

        assert ledger.balance_of(CURRENCY, FEE_RECIPIENT) == ETHER
        assert ledger.balance_of(CURRENCY, BORROWER.address) == 109 * ETHER

    def test_countable_collateral(self, market, engine, ledger):
        offer = market.borrow_offer(
            collection=MULTI_COLLECTION,
            collateral_type=CollateralType.ERC1155,
            token_id=MULTI_TOKEN_ID,
            size=3,
        )
        lien_id = market.loan(offer)

        assert engine.get_lien(lien_id).size == 3
        assert ledger.token_balance(MULTI_COLLECTION, MULTI_TOKEN_ID, engine.address) == 3

    def test_contract_wallet_borrower(self, market, engine, ledger, contract_wallet):
        offer = market.borrow_offer(borrower=contract_wallet, token_id=5)
        auth, auth_signature = market.authorize(offer, LENDER.address, CollateralType.ERC721, COLLECTION, 5)

        lien_id = engine.loan(LENDER.address, offer, auth, market.sign(offer, LENDER), auth_signature)

        assert engine.get_lien(lien_id).borrower == contract_wallet
        assert ledger.owner_of(COLLECTION, 5) == engine.address
        assert ledger.balance_of(CURRENCY, contract_wallet) == 110 * ETHER

    def test_offer_is_single_use(self, market, engine):
        offer = market.borrow_offer()
        market.loan(offer)
        with pytest.raises(OfferUnavailable):
            market.loan(offer, caller=OTHER_LENDER.address)

    def test_cancelled_offer(self, market, engine):
        offer = market.borrow_offer()
        engine.cancel_offers(BORROWER.address, [offer.salt])
        with pytest.raises(OfferUnavailable):
            market.loan(offer)

    def test_criteria_rejected(self, market):
        offer = market.borrow_offer(collateral_type=CollateralType.ERC721_WITH_CRITERIA)
        with pytest.raises(InvalidCollateral):
            market.loan(offer)

    def test_unique_with_size(self, market):
        with pytest.raises(InvalidCollateralSize):
            market.loan(market.borrow_offer(size=2))

    def test_auth_must_name_lender(self, market, engine):
        offer = market.borrow_offer()
        auth, auth_signature = market.authorize(offer, BORROWER.address, offer.collateral_type, COLLECTION, 1)
        with pytest.raises(Unauthorized):
            engine.loan(LENDER.address, offer, auth, market.sign(offer), auth_signature)


class TestLoanBatch:
    """Funding several borrower offers at once"""

    def _signed(self, market, offer, caller=LENDER.address):
        auth, auth_signature = market.authorize(
            offer, caller, offer.collateral_type, offer.collection, offer.token_id, offer.size
        )
        return SignedBorrowOffer(
            offer=offer, auth=auth, offer_signature=market.sign(offer), auth_signature=auth_signature
        )

    def test_funds_all(self, market, engine, ledger):
        offers = [
            self._signed(market, market.borrow_offer(token_id=1, amount=2 * ETHER)),
            self._signed(market, market.borrow_offer(token_id=2, amount=3 * ETHER)),
        ]
        assert engine.loan_batch(LENDER.address, offers) == [0, 1]
        assert ledger.balance_of(CURRENCY, LENDER.address) == 95 * ETHER

    def test_duplicate_offer_reverts_batch(self, market, engine, ledger):
        signed = self._signed(market, market.borrow_offer())
        with pytest.raises(OfferUnavailable):
            engine.loan_batch(LENDER.address, [signed, signed])

        assert ledger.owner_of(COLLECTION, 1) == BORROWER.address
        assert ledger.balance_of(CURRENCY, LENDER.address) == 100 * ETHER
        assert not engine.nonces.is_cancelled(BORROWER.address, signed.offer.salt)
