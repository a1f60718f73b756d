"""
Tests for the in-memory ledger
"""

import pytest

from kettle_protocol.errors import InsufficientFunds, Unapproved, NotOwner
from kettle_protocol.ledger import InMemoryLedger
from kettle_protocol.types import CollateralType

from conftest import (
    START, ETHER, LENDER, BORROWER, THIRD_PARTY, COLLECTION, MULTI_COLLECTION,
    MULTI_TOKEN_ID, CURRENCY,
)


class TestCurrency:
    """Currency transfers by the operator"""

    def test_transfer_consumes_allowance(self, ledger):
        ledger.approve(CURRENCY, LENDER.address, ledger.operator, 5 * ETHER)
        ledger.transfer(CURRENCY, LENDER.address, BORROWER.address, 2 * ETHER)

        assert ledger.balance_of(CURRENCY, LENDER.address) == 98 * ETHER
        assert ledger.balance_of(CURRENCY, BORROWER.address) == 102 * ETHER
        assert ledger.allowance(CURRENCY, LENDER.address, ledger.operator) == 3 * ETHER

    def test_transfer_without_allowance(self, ledger):
        ledger.approve(CURRENCY, LENDER.address, ledger.operator, 0)
        with pytest.raises(Unapproved):
            ledger.transfer(CURRENCY, LENDER.address, BORROWER.address, 1)

    def test_insufficient_funds(self, ledger):
        with pytest.raises(InsufficientFunds):
            ledger.transfer(CURRENCY, LENDER.address, BORROWER.address, 101 * ETHER)

    def test_zero_and_self_transfers_are_noops(self, ledger):
        ledger.transfer(CURRENCY, LENDER.address, BORROWER.address, 0)
        ledger.transfer(CURRENCY, LENDER.address, LENDER.address, 1000 * ETHER)
        assert ledger.balance_of(CURRENCY, LENDER.address) == 100 * ETHER


class TestCustody:
    """Unique and countable asset movements"""

    def test_unique_transfer(self, ledger):
        ledger.transfer_custody(CollateralType.ERC721, COLLECTION, 1, 1, BORROWER.address, LENDER.address)
        assert ledger.owner_of(COLLECTION, 1) == LENDER.address

    def test_unique_not_owner(self, ledger):
        with pytest.raises(NotOwner):
            ledger.transfer_custody(CollateralType.ERC721, COLLECTION, 1, 1, THIRD_PARTY.address, LENDER.address)

    def test_unapproved(self, ledger):
        ledger.set_approval_for_all(COLLECTION, BORROWER.address, ledger.operator, False)
        with pytest.raises(Unapproved):
            ledger.transfer_custody(CollateralType.ERC721, COLLECTION, 1, 1, BORROWER.address, LENDER.address)

    def test_countable_transfer(self, ledger):
        ledger.transfer_custody(
            CollateralType.ERC1155, MULTI_COLLECTION, MULTI_TOKEN_ID, 4, BORROWER.address, LENDER.address
        )
        assert ledger.token_balance(MULTI_COLLECTION, MULTI_TOKEN_ID, BORROWER.address) == 6
        assert ledger.token_balance(MULTI_COLLECTION, MULTI_TOKEN_ID, LENDER.address) == 4

        with pytest.raises(NotOwner):
            ledger.transfer_custody(
                CollateralType.ERC1155, MULTI_COLLECTION, MULTI_TOKEN_ID, 7, BORROWER.address, LENDER.address
            )


class TestClockAndAtomicity:
    """Time and rollback"""

    def test_clock(self, ledger):
        assert ledger.now() == START
        assert ledger.advance(60) == START + 60
        with pytest.raises(ValueError):
            ledger.set_time(START)

    def test_atomic_rolls_back(self, ledger):
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.transfer(CURRENCY, LENDER.address, BORROWER.address, ETHER)
                ledger.transfer_custody(CollateralType.ERC721, COLLECTION, 1, 1, BORROWER.address, LENDER.address)
                raise RuntimeError("abort")

        assert ledger.balance_of(CURRENCY, LENDER.address) == 100 * ETHER
        assert ledger.owner_of(COLLECTION, 1) == BORROWER.address

    def test_atomic_commits(self, ledger):
        with ledger.atomic():
            ledger.transfer(CURRENCY, LENDER.address, BORROWER.address, ETHER)
        assert ledger.balance_of(CURRENCY, BORROWER.address) == 101 * ETHER

    def test_unregistered_contract_wallet(self, ledger):
        assert not ledger.is_valid_signature(LENDER.address, b"\x00" * 32, b"\x00" * 65)

    def test_operator_moves_own_assets_without_approval(self):
        ledger = InMemoryLedger(operator=LENDER.address, start_time=START)
        ledger.mint(CURRENCY, LENDER.address, ETHER)
        ledger.transfer(CURRENCY, LENDER.address, BORROWER.address, ETHER)
        assert ledger.balance_of(CURRENCY, BORROWER.address) == ETHER
