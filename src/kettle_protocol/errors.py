"""
Error taxonomy for the lending protocol.

Every failure aborts the whole atomic operation and surfaces as one named
condition. The intermediate classes group conditions by what the caller has
to do about them.
"""

from typing import Optional


class KettleError(Exception):
    """Base exception for protocol operations"""

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        self.error_code = error_code or type(self).__name__
        self.message = message or self.error_code
        super().__init__(self.message)


# Taxonomy groups

class AuthorizationError(KettleError):
    """Caller or signer mismatch"""
    pass


class LivenessError(KettleError):
    """Offer is no longer usable; a fresh offer is required"""
    pass


class StateConsistencyError(KettleError):
    """Stale or mismatched input; current state must be re-fetched"""
    pass


class CollateralValidationError(KettleError):
    """Structural mismatch between offer and presented asset"""
    pass


class EconomicBoundError(KettleError):
    """Requested terms violate offer-embedded bounds"""
    pass


class TimingError(KettleError):
    """Wrong side of the default deadline"""
    pass


class ConfigurationError(KettleError):
    """Protocol has not been configured for the request"""
    pass


class LedgerError(KettleError):
    """Failure reported by the external asset ledger"""
    pass


# Authorization

class Unauthorized(AuthorizationError):
    pass


class InvalidSignature(AuthorizationError):
    pass


class AuthorizationExpired(AuthorizationError):
    pass


# Liveness

class OfferExpired(LivenessError):
    pass


class OfferUnavailable(LivenessError):
    pass


# State consistency

class InvalidLien(StateConsistencyError):
    pass


class InvalidLienHash(StateConsistencyError):
    pass


class LienIdMismatch(StateConsistencyError):
    pass


class LendersDoNotMatch(StateConsistencyError):
    pass


# Collateral validation

class InvalidCollateral(CollateralValidationError):
    pass


class InvalidCollateralCriteria(CollateralValidationError):
    pass


class InvalidCollateralSize(CollateralValidationError):
    pass


class CollectionsDoNotMatch(CollateralValidationError):
    pass


class CurrenciesDoNotMatch(CollateralValidationError):
    pass


# Economic bounds

class InvalidLoanAmount(EconomicBoundError):
    pass


class InsufficientOffer(EconomicBoundError):
    """Loan offer total amount already drawn"""
    pass


class TotalFeeTooHigh(EconomicBoundError):
    pass


class RateTooHigh(EconomicBoundError):
    pass


class InvalidDuration(EconomicBoundError):
    pass


# Timing

class LienIsDefaulted(TimingError):
    pass


class LienNotDefaulted(TimingError):
    pass


# Configuration

class NoEscrowImplementation(ConfigurationError):
    pass


# Ledger

class InsufficientFunds(LedgerError):
    pass


class Unapproved(LedgerError):
    pass


class NotOwner(LedgerError):
    """Asset custody transfer from an account that does not hold it"""
    pass
