"""
Lien Engine

State machine turning signed offers into funded liens and governing their
repayment, seizure, refinancing and renegotiation.

Each public mutating operation is one atomic unit: engine state and the
ledger are snapshotted on entry and restored if any step raises, so a failed
operation (including any entry of a batch) leaves no side effect.
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Any, Optional, List, Sequence, Callable, Iterator, Union

from .calculations import repayment_amount, split_fees
from .config import ProtocolSettings, settings as default_settings
from .criteria import verify_collateral
from .errors import (
    KettleError,
    Unauthorized,
    AuthorizationExpired,
    OfferExpired,
    OfferUnavailable,
    InvalidLien,
    InvalidLienHash,
    LienIdMismatch,
    LendersDoNotMatch,
    InvalidCollateral,
    InvalidCollateralSize,
    CollectionsDoNotMatch,
    CurrenciesDoNotMatch,
    InvalidLoanAmount,
    InsufficientOffer,
    RateTooHigh,
    InvalidDuration,
    LienIsDefaulted,
    LienNotDefaulted,
)
from .escrow import EscrowRegistry
from .hashing import collateral_hash, hash_offer, hash_to_sign, lien_hash
from .interfaces import ILedger, IContractSignatureValidator
from .models import (
    Fee,
    Lien,
    LoanOffer,
    BorrowOffer,
    RenegotiationOffer,
    OfferAuth,
    SignedLoanOffer,
    SignedBorrowOffer,
    Fulfillment,
    RefinanceRequest,
    ProtocolEvent,
)
from .nonces import NonceRegistry
from .signatures import SignatureVerifier
from .types import CollateralType, EventType, LienStatus, ZERO_HASH
from .utils import is_zero_address, normalize_address, same_address, to_bytes32

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2"

EventListener = Callable[[ProtocolEvent], None]


class LienEngine:
    """Manages lien origination, repayment, seizure, refinancing and renegotiation"""

    def __init__(self, ledger: ILedger, owner: str, auth_signer: str,
                 settings: Optional[ProtocolSettings] = None,
                 contract_validator: Optional[IContractSignatureValidator] = None):
        self.settings = settings or default_settings
        self.address = self.settings.verifying_contract
        self.ledger = ledger
        self.verifier = SignatureVerifier(self.settings.domain(), contract_validator)
        self.nonces = NonceRegistry()
        self.escrows = EscrowRegistry(self.address)

        self._owner = normalize_address(owner)
        self._auth_signer = normalize_address(auth_signer)

        self._liens: Dict[int, Lien] = {}
        self._custodians: Dict[int, str] = {}
        self._statuses: Dict[int, LienStatus] = {}
        self._grace_periods: Dict[int, int] = {}
        self._drawn: Dict[bytes, int] = {}  # loan offer hash -> amount taken
        self._next_lien_id = 0

        self._events: List[ProtocolEvent] = []
        self._pending: List[ProtocolEvent] = []
        self._listeners: List[EventListener] = []
        self._in_atomic = False

    # ------------------------------------------------------------------
    # Atomicity and events
    # ------------------------------------------------------------------

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "owner": self._owner,
            "auth_signer": self._auth_signer,
            "liens": dict(self._liens),
            "custodians": dict(self._custodians),
            "statuses": dict(self._statuses),
            "grace_periods": dict(self._grace_periods),
            "drawn": dict(self._drawn),
            "next_lien_id": self._next_lien_id,
            "nonces": self.nonces.snapshot(),
            "escrows": self.escrows.snapshot(),
        }

    def _restore(self, state: Dict[str, Any]) -> None:
        self._owner = state["owner"]
        self._auth_signer = state["auth_signer"]
        self._liens = state["liens"]
        self._custodians = state["custodians"]
        self._statuses = state["statuses"]
        self._grace_periods = state["grace_periods"]
        self._drawn = state["drawn"]
        self._next_lien_id = state["next_lien_id"]
        self.nonces.restore(state["nonces"])
        self.escrows.restore(state["escrows"])

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        if self._in_atomic:
            yield
            return

        state = self._snapshot()
        self._in_atomic = True
        try:
            with self.ledger.atomic():
                yield
        except KettleError as e:
            self._restore(state)
            self._pending.clear()
            logger.warning(f"{operation} reverted: {e.error_code}: {e.message}")
            raise
        except BaseException:
            self._restore(state)
            self._pending.clear()
            raise
        finally:
            self._in_atomic = False

        committed, self._pending = self._pending, []
        self._events.extend(committed)
        for event in committed:
            self._notify(event)

    def _notify(self, event: ProtocolEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed on {event.event_type.value} event {event.sequence}")

    def _emit(self, event_type: EventType, args: Dict[str, Any], lien_id: Optional[int] = None) -> None:
        self._pending.append(ProtocolEvent(
            event_type=event_type,
            args=args,
            timestamp=self.ledger.now(),
            lien_id=lien_id,
            sequence=len(self._events) + len(self._pending),
        ))

    def subscribe(self, listener: EventListener) -> None:
        """Receive every event after its operation commits"""
        self._listeners.append(listener)

    @property
    def events(self) -> List[ProtocolEvent]:
        return list(self._events)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def auth_signer(self) -> str:
        return self._auth_signer

    def information(self) -> Dict[str, Any]:
        """Deployment information"""
        return {
            "version": PROTOCOL_VERSION,
            "domain": self.verifier.domain,
            "domainSeparator": "0x" + self.verifier.domain_separator.hex(),
            "owner": self._owner,
            "authSigner": self._auth_signer,
            "openLiens": len(self._liens),
            "nextLienId": self._next_lien_id,
        }

    def get_lien(self, lien_id: int) -> Lien:
        """Open lien by id; closed or unknown ids raise InvalidLien"""
        lien = self._liens.get(lien_id)
        if lien is None:
            raise InvalidLien(f"Lien {lien_id} is not open")
        return lien

    def lien_status(self, lien_id: int) -> LienStatus:
        status = self._statuses.get(lien_id)
        if status is None:
            raise InvalidLien(f"Lien {lien_id} does not exist")
        return status

    def lien_hash(self, lien_id: int) -> bytes:
        return lien_hash(self.get_lien(lien_id))

    def lien_custodian(self, lien_id: int) -> str:
        self.get_lien(lien_id)
        return self._custodians[lien_id]

    @staticmethod
    def get_repayment_amount(principal: int, rate: int, duration: int) -> int:
        return repayment_amount(principal, rate, duration)

    def repayment_amount_for(self, lien_id: int) -> int:
        lien = self.get_lien(lien_id)
        return repayment_amount(lien.amount, lien.rate, lien.duration)

    def get_grace_period_for_lien(self, lien_id: int) -> int:
        return self._grace_periods.get(lien_id, 0)

    def lien_deadline(self, lien_id: int) -> int:
        """Instant from which the lien is defaulted"""
        lien = self.get_lien(lien_id)
        return lien.end_time + self.get_grace_period_for_lien(lien_id)

    def is_defaulted(self, lien_id: int) -> bool:
        return self.ledger.now() >= self.lien_deadline(lien_id)

    def amount_drawn(self, offer: Union[LoanOffer, bytes]) -> int:
        offer_hash = offer if isinstance(offer, bytes) else hash_offer(offer)
        return self._drawn.get(offer_hash, 0)

    @staticmethod
    def get_offer_hash(offer: Union[LoanOffer, BorrowOffer, RenegotiationOffer]) -> bytes:
        return hash_offer(offer)

    def get_hash_to_sign(self, struct_hash: bytes) -> bytes:
        return hash_to_sign(self.verifier.domain, struct_hash)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def _only_owner(self, caller: str) -> None:
        if not same_address(caller, self._owner):
            raise Unauthorized(f"{caller} is not the protocol owner")

    def set_escrow(self, caller: str, collection: str, custodian: Optional[str] = None) -> None:
        """Register a collection; custodian None selects self-custody"""
        with self._atomic("set_escrow"):
            self._only_owner(caller)
            registration = self.escrows.set_escrow(collection, custodian)
            self._emit(EventType.ESCROW_SET, {
                "collection": collection,
                "custodian": registration.custodian,
            })

    def set_auth_signer(self, caller: str, auth_signer: str) -> None:
        with self._atomic("set_auth_signer"):
            self._only_owner(caller)
            self._auth_signer = normalize_address(auth_signer)
            self._emit(EventType.AUTH_SIGNER_SET, {"authSigner": self._auth_signer})
            logger.info(f"Auth signer set to {self._auth_signer}")

    def set_grace_period_for_lien(self, caller: str, lien_id: int, grace_period: int) -> None:
        """Extend the default deadline of one open lien"""
        with self._atomic("set_grace_period_for_lien"):
            self._only_owner(caller)
            self.get_lien(lien_id)
            if grace_period < 0:
                raise InvalidDuration("Grace period must not be negative")
            self._grace_periods[lien_id] = grace_period
            self._emit(EventType.GRACE_PERIOD_SET, {"gracePeriod": grace_period}, lien_id)
            logger.info(f"Grace period for lien {lien_id} set to {grace_period}s")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._atomic("transfer_ownership"):
            self._only_owner(caller)
            previous, self._owner = self._owner, normalize_address(new_owner)
            self._emit(EventType.OWNERSHIP_TRANSFERRED, {
                "previousOwner": previous,
                "newOwner": self._owner,
            })
            logger.info(f"Ownership transferred from {previous} to {self._owner}")

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def increment_nonce(self, caller: str) -> int:
        with self._atomic("increment_nonce"):
            nonce = self.nonces.increment_nonce(caller)
            self._emit(EventType.NONCE_INCREMENTED, {"user": caller, "newNonce": nonce})
        return nonce

    def cancel_offers(self, caller: str, salts: Sequence[int]) -> None:
        with self._atomic("cancel_offers"):
            self.nonces.cancel_offers(caller, salts)
            for salt in salts:
                self._emit(EventType.OFFER_CANCELLED, {"user": caller, "salt": salt})

    def cancel_offer(self, caller: str, salt: int) -> None:
        self.cancel_offers(caller, [salt])

    # ------------------------------------------------------------------
    # Shared validation
    # ------------------------------------------------------------------

    def _check_expirations(self, offer_expiration: int, auth: OfferAuth) -> None:
        now = self.ledger.now()
        if now > offer_expiration:
            raise OfferExpired(f"Offer expired at {offer_expiration}")
        if now > auth.expiration:
            raise AuthorizationExpired(f"Authorization expired at {auth.expiration}")

    def _check_rate(self, rate: int) -> None:
        if rate > self.settings.max_rate:
            raise RateTooHigh(f"Rate {rate} exceeds maximum {self.settings.max_rate}")

    def _verify_auth(self, auth: OfferAuth, auth_signature: bytes, offer_hash: bytes,
                     takers: Sequence[str], collateral: bytes) -> None:
        """Authorizer signature binding this offer, one taker and one collateral instance"""
        if to_bytes32(auth.offer_hash) != offer_hash:
            raise Unauthorized("Authorization was issued for a different offer")
        if not any(same_address(auth.taker, taker) for taker in takers):
            raise Unauthorized(f"Authorization is not issued to {takers[0]}")
        self.verifier.verify_auth(auth, auth_signature, self._auth_signer)
        if to_bytes32(auth.collateral_hash) != collateral:
            raise InvalidCollateral("Authorization does not cover the presented collateral")

    def _validate_loan_offer(self, takers: Sequence[str], offer: LoanOffer,
                             offer_signature: bytes, auth: OfferAuth, auth_signature: bytes,
                             amount: int, token_id: int, size: int,
                             proof: Sequence[bytes]) -> bytes:
        """Full check of a lender offer draw; returns the offer hash"""
        self._check_expirations(offer.expiration, auth)
        offer_hash = self.verifier.verify_offer(offer, offer_signature)
        self._verify_auth(
            auth, auth_signature, offer_hash, takers,
            collateral_hash(CollateralType(offer.collateral_type).base, offer.collection, token_id, size),
        )
        self.nonces.check_live(offer.lender, offer.nonce, offer.salt)
        self._check_rate(offer.rate)

        verify_collateral(offer.collateral_type, token_id, size, offer.identifier, offer.size, proof)

        if amount < offer.min_amount or amount > offer.max_amount:
            raise InvalidLoanAmount(
                f"Amount {amount} outside [{offer.min_amount}, {offer.max_amount}]"
            )
        drawn = self._drawn.get(offer_hash, 0)
        if drawn + amount > offer.total_amount:
            raise InsufficientOffer(
                f"Offer has {offer.total_amount - drawn} remaining, requested {amount}"
            )
        self._drawn[offer_hash] = drawn + amount

        logger.debug(f"Loan offer 0x{offer_hash.hex()} validated for {amount} against token {token_id}")
        return offer_hash

    def _pay_fees(self, currency: str, payer: str, fees: Sequence[Fee], amounts: Sequence[int]) -> None:
        for fee, fee_amount in zip(fees, amounts):
            self.ledger.transfer(currency, payer, fee.recipient, fee_amount)

    def _is_past_deadline(self, lien_id: int, lien: Lien) -> bool:
        return self.ledger.now() >= lien.end_time + self.get_grace_period_for_lien(lien_id)

    def _open_lien(self, lien: Lien, custodian: str) -> int:
        lien_id = self._next_lien_id
        self._next_lien_id += 1
        self._liens[lien_id] = lien
        self._custodians[lien_id] = custodian
        self._statuses[lien_id] = LienStatus.OPEN
        return lien_id

    def _close_lien(self, lien_id: int, status: LienStatus) -> str:
        """Clear the slot and return the custodian that held the collateral"""
        del self._liens[lien_id]
        self._grace_periods.pop(lien_id, None)
        self._statuses[lien_id] = status
        return self._custodians.pop(lien_id)

    def _originate(self, offer_hash: bytes, lender: str, borrower: str, collateral_owner: str,
                   collateral_type: CollateralType, collection: str, token_id: int, size: int,
                   currency: str, amount: int, duration: int, rate: int,
                   fees: Sequence[Fee]) -> int:
        custodian = self.escrows.resolve_custodian(collection)
        net_amount, fee_amounts = split_fees(amount, fees)

        lien = Lien(
            offer_hash=offer_hash,
            lender=lender,
            borrower=borrower,
            collateral_type=CollateralType(collateral_type).base,
            collection=collection,
            token_id=token_id,
            size=size,
            currency=currency,
            amount=amount,
            duration=duration,
            rate=rate,
            start_time=self.ledger.now(),
        )
        lien_id = self._open_lien(lien, custodian)

        self.ledger.transfer_custody(
            lien.collateral_type, collection, token_id, size, collateral_owner, custodian
        )
        self._pay_fees(currency, lender, fees, fee_amounts)
        self.ledger.transfer(currency, lender, borrower, net_amount)

        self._emit(EventType.LOAN_OFFER_TAKEN, {
            **lien.to_dict(),
            "netAmount": net_amount,
            "feeAmounts": list(fee_amounts),
            "custodian": custodian,
        }, lien_id)
        logger.info(
            f"Lien {lien_id} opened: {amount} of {currency} from {lender} to {borrower} "
            f"against {collection}#{token_id}"
        )
        return lien_id

    # ------------------------------------------------------------------
    # Origination
    # ------------------------------------------------------------------

    def _borrow(self, caller: str, offer: LoanOffer, offer_signature: bytes, auth: OfferAuth,
                auth_signature: bytes, amount: int, token_id: int,
                on_behalf_of: Optional[str], proof: Sequence[bytes]) -> int:
        if on_behalf_of is None or is_zero_address(on_behalf_of):
            on_behalf_of = caller
        borrower = normalize_address(on_behalf_of)
        size = offer.size if CollateralType(offer.collateral_type).is_countable else 1

        offer_hash = self._validate_loan_offer(
            [caller, borrower], offer, offer_signature, auth, auth_signature,
            amount, token_id, size, proof,
        )
        return self._originate(
            offer_hash, offer.lender, borrower, caller,
            offer.collateral_type, offer.collection, token_id, size,
            offer.currency, amount, offer.duration, offer.rate, offer.fees,
        )

    def borrow(self, caller: str, offer: LoanOffer, auth: OfferAuth, offer_signature: bytes,
               auth_signature: bytes, amount: int, token_id: int,
               on_behalf_of: Optional[str] = None, proof: Sequence[bytes] = ()) -> int:
        """
        Take a lender's loan offer, pledging the caller's collateral.

        Args:
            caller: account pledging the collateral
            offer: lender-signed loan offer
            auth: authorizer-signed binding of offer, taker and collateral
            amount: principal to draw, within the offer's min/max
            token_id: pledged token; must match the offer identifier or criteria
            on_behalf_of: borrower of record receiving the principal (None or the
                zero address means the caller)
            proof: Merkle proof for criteria offers

        Returns:
            Id of the new lien
        """
        with self._atomic("borrow"):
            return self._borrow(
                caller, offer, offer_signature, auth, auth_signature,
                amount, token_id, on_behalf_of, proof,
            )

    def borrow_batch(self, caller: str, offers: Sequence[SignedLoanOffer],
                     fulfillments: Sequence[Fulfillment],
                     on_behalf_of: Optional[str] = None) -> List[int]:
        """Draw against several offers at once; any failure aborts every draw"""
        with self._atomic("borrow_batch"):
            lien_ids = []
            for fulfillment in fulfillments:
                if not 0 <= fulfillment.offer_index < len(offers):
                    raise OfferUnavailable(f"No offer at index {fulfillment.offer_index}")
                signed = offers[fulfillment.offer_index]
                lien_ids.append(self._borrow(
                    caller, signed.offer, signed.signature,
                    fulfillment.auth, fulfillment.auth_signature,
                    fulfillment.amount, fulfillment.token_id, on_behalf_of, fulfillment.proof,
                ))
            return lien_ids

    def _loan(self, caller: str, offer: BorrowOffer, offer_signature: bytes,
              auth: OfferAuth, auth_signature: bytes) -> int:
        lender = normalize_address(caller)
        collateral_type = CollateralType(offer.collateral_type)
        if collateral_type.is_criteria:
            raise InvalidCollateral("Borrow offers must name an exact collateral item")
        if not collateral_type.is_countable and offer.size != 1:
            raise InvalidCollateralSize(f"Unique collateral must have size 1, got {offer.size}")
        size = offer.size

        self._check_expirations(offer.expiration, auth)
        offer_hash = self.verifier.verify_offer(offer, offer_signature)
        self._verify_auth(
            auth, auth_signature, offer_hash, [lender],
            collateral_hash(collateral_type, offer.collection, offer.token_id, size),
        )
        self.nonces.check_live(offer.borrower, offer.nonce, offer.salt)
        self._check_rate(offer.rate)
        self.nonces.consume(offer.borrower, offer.salt)

        return self._originate(
            offer_hash, lender, offer.borrower, offer.borrower,
            collateral_type, offer.collection, offer.token_id, size,
            offer.currency, offer.amount, offer.duration, offer.rate, offer.fees,
        )

    def loan(self, caller: str, offer: BorrowOffer, auth: OfferAuth, offer_signature: bytes,
             auth_signature: bytes) -> int:
        """Fund a borrower's offer; the caller becomes the lender"""
        with self._atomic("loan"):
            return self._loan(caller, offer, offer_signature, auth, auth_signature)

    def loan_batch(self, caller: str, offers: Sequence[SignedBorrowOffer]) -> List[int]:
        with self._atomic("loan_batch"):
            return [
                self._loan(caller, signed.offer, signed.offer_signature, signed.auth, signed.auth_signature)
                for signed in offers
            ]

    # ------------------------------------------------------------------
    # Repayment and seizure
    # ------------------------------------------------------------------

    def _repay(self, caller: str, lien_id: int) -> int:
        lien = self.get_lien(lien_id)
        if self._is_past_deadline(lien_id, lien):
            raise LienIsDefaulted(f"Lien {lien_id} is past its deadline")

        amount = repayment_amount(lien.amount, lien.rate, lien.duration)
        custodian = self._close_lien(lien_id, LienStatus.REPAID)

        self.ledger.transfer(lien.currency, caller, lien.lender, amount)
        self.ledger.transfer_custody(
            lien.collateral_type, lien.collection, lien.token_id, lien.size, custodian, lien.borrower
        )

        self._emit(EventType.REPAY, {
            "lender": lien.lender,
            "borrower": lien.borrower,
            "payer": caller,
            "collection": lien.collection,
            "tokenId": lien.token_id,
            "amount": amount,
        }, lien_id)
        logger.info(f"Lien {lien_id} repaid by {caller}: {amount} of {lien.currency}")
        return amount

    def repay(self, caller: str, lien_id: int) -> int:
        """Repay principal plus interest; anyone may repay. Returns the amount paid"""
        with self._atomic("repay"):
            return self._repay(caller, lien_id)

    def repay_batch(self, caller: str, lien_ids: Sequence[int]) -> List[int]:
        with self._atomic("repay_batch"):
            return [self._repay(caller, lien_id) for lien_id in lien_ids]

    def _seize(self, caller: str, lien_id: int) -> None:
        lien = self.get_lien(lien_id)
        if not same_address(caller, lien.lender):
            raise Unauthorized(f"{caller} is not the lender of lien {lien_id}")
        if not self._is_past_deadline(lien_id, lien):
            raise LienNotDefaulted(f"Lien {lien_id} is not defaulted")

        custodian = self._close_lien(lien_id, LienStatus.SEIZED)
        self.ledger.transfer_custody(
            lien.collateral_type, lien.collection, lien.token_id, lien.size, custodian, lien.lender
        )

        self._emit(EventType.SEIZE, {
            "lender": lien.lender,
            "borrower": lien.borrower,
            "collection": lien.collection,
            "tokenId": lien.token_id,
        }, lien_id)
        logger.info(f"Lien {lien_id} seized by {caller}")

    def seize(self, caller: str, lien_id: int) -> None:
        """Claim the collateral of a defaulted lien"""
        with self._atomic("seize"):
            self._seize(caller, lien_id)

    def seize_batch(self, caller: str, lien_ids: Sequence[int]) -> None:
        with self._atomic("seize_batch"):
            for lien_id in lien_ids:
                self._seize(caller, lien_id)

    # ------------------------------------------------------------------
    # Refinance
    # ------------------------------------------------------------------

    def _refinance(self, caller: str, lien_id: int, offer: LoanOffer, offer_signature: bytes,
                   auth: OfferAuth, auth_signature: bytes, amount: int,
                   proof: Sequence[bytes]) -> int:
        lien = self.get_lien(lien_id)
        if not same_address(caller, lien.borrower):
            raise Unauthorized(f"{caller} is not the borrower of lien {lien_id}")
        if self._is_past_deadline(lien_id, lien):
            raise LienIsDefaulted(f"Lien {lien_id} is past its deadline")
        if not same_address(offer.collection, lien.collection):
            raise CollectionsDoNotMatch(f"Offer collection {offer.collection} differs from {lien.collection}")
        if not same_address(offer.currency, lien.currency):
            raise CurrenciesDoNotMatch(f"Offer currency {offer.currency} differs from {lien.currency}")
        if CollateralType(offer.collateral_type).base != lien.collateral_type:
            raise InvalidCollateral("Offer collateral type differs from the lien")

        offer_hash = self._validate_loan_offer(
            [caller], offer, offer_signature, auth, auth_signature,
            amount, lien.token_id, lien.size, proof,
        )

        owed = repayment_amount(lien.amount, lien.rate, lien.duration)
        net_amount, fee_amounts = split_fees(amount, offer.fees)
        custodian = self._close_lien(lien_id, LienStatus.REFINANCED)

        new_lien = Lien(
            offer_hash=offer_hash,
            lender=offer.lender,
            borrower=lien.borrower,
            collateral_type=lien.collateral_type,
            collection=lien.collection,
            token_id=lien.token_id,
            size=lien.size,
            currency=lien.currency,
            amount=amount,
            duration=offer.duration,
            rate=offer.rate,
            start_time=self.ledger.now(),
        )
        new_lien_id = self._open_lien(new_lien, custodian)

        self._pay_fees(lien.currency, offer.lender, offer.fees, fee_amounts)
        self.ledger.transfer(lien.currency, offer.lender, lien.lender, min(owed, net_amount))
        if net_amount > owed:
            self.ledger.transfer(lien.currency, offer.lender, lien.borrower, net_amount - owed)
        elif owed > net_amount:
            self.ledger.transfer(lien.currency, lien.borrower, lien.lender, owed - net_amount)

        self._emit(EventType.REFINANCE, {
            **new_lien.to_dict(),
            "oldLienId": lien_id,
            "oldLender": lien.lender,
            "repaymentAmount": owed,
            "netAmount": net_amount,
            "feeAmounts": list(fee_amounts),
        }, new_lien_id)
        logger.info(f"Lien {lien_id} refinanced into lien {new_lien_id} with lender {offer.lender}")
        return new_lien_id

    def refinance(self, caller: str, lien_id: int, offer: LoanOffer, auth: OfferAuth,
                  offer_signature: bytes, auth_signature: bytes, amount: int,
                  proof: Sequence[bytes] = ()) -> int:
        """
        Pay off a lien with a new loan offer and open a replacement lien.

        The new lender pays the old lender up to the old repayment amount; the
        borrower receives any excess, or covers any shortfall. Collateral stays
        with its custodian. Returns the id of the new lien.
        """
        with self._atomic("refinance"):
            return self._refinance(
                caller, lien_id, offer, offer_signature, auth, auth_signature, amount, proof
            )

    def refinance_batch(self, caller: str, requests: Sequence[RefinanceRequest]) -> List[int]:
        with self._atomic("refinance_batch"):
            return [
                self._refinance(
                    caller, request.lien_id, request.offer, request.offer_signature,
                    request.auth, request.auth_signature, request.amount, request.proof,
                )
                for request in requests
            ]

    # ------------------------------------------------------------------
    # Renegotiation
    # ------------------------------------------------------------------

    def renegotiate(self, caller: str, lien_id: int, offer: RenegotiationOffer, auth: OfferAuth,
                    offer_signature: bytes, auth_signature: bytes) -> Lien:
        """
        Accept the lender's new duration and rate for an open lien.

        The lien keeps its id, parties, collateral, principal and start time,
        so the new duration changes the remaining term rather than restarting
        it. Fees in the offer are charged on principal to the borrower.

        The offer is not consumed; pinning lien_hash limits it to one use.
        """
        with self._atomic("renegotiate"):
            lien = self.get_lien(lien_id)
            if not same_address(caller, lien.borrower):
                raise Unauthorized(f"{caller} is not the borrower of lien {lien_id}")
            if not same_address(offer.lender, lien.lender):
                raise LendersDoNotMatch(f"Offer lender {offer.lender} is not the lien lender")
            if offer.lien_id != lien_id:
                raise LienIdMismatch(f"Offer is for lien {offer.lien_id}, not {lien_id}")

            pinned = to_bytes32(offer.lien_hash)
            if pinned != ZERO_HASH and pinned != lien_hash(lien):
                raise InvalidLienHash(f"Lien {lien_id} changed since the offer was signed")
            if lien.start_time + offer.new_duration <= self.ledger.now():
                raise InvalidDuration("Renegotiated term would already be over")

            self._check_expirations(offer.expiration, auth)
            offer_hash = self.verifier.verify_offer(offer, offer_signature)
            self._verify_auth(
                auth, auth_signature, offer_hash, [caller],
                collateral_hash(lien.collateral_type, lien.collection, lien.token_id, lien.size),
            )
            self.nonces.check_live(lien.lender, offer.nonce, offer.salt)
            self._check_rate(offer.new_rate)

            _, fee_amounts = split_fees(lien.amount, offer.fees)
            self._pay_fees(lien.currency, caller, offer.fees, fee_amounts)

            renegotiated = replace(
                lien,
                offer_hash=offer_hash,
                duration=offer.new_duration,
                rate=offer.new_rate,
            )
            self._liens[lien_id] = renegotiated

            self._emit(EventType.RENEGOTIATE, {
                **renegotiated.to_dict(),
                "previousDuration": lien.duration,
                "previousRate": lien.rate,
                "feeAmounts": list(fee_amounts),
            }, lien_id)
            logger.info(
                f"Lien {lien_id} renegotiated: duration {lien.duration}->{offer.new_duration}, "
                f"rate {lien.rate}->{offer.new_rate}"
            )
            return renegotiated
