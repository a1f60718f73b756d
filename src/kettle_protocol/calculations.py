"""
Interest and fee calculations.

All arithmetic is integer with truncating division. Interest is fixed for a
lien's full nominal duration; there is no early-repayment proration.
"""

from typing import List, Sequence, Tuple

from .errors import TotalFeeTooHigh
from .models import Fee
from .types import RATE_SCALE, SECONDS_PER_YEAR


def interest_amount(principal: int, rate: int, duration: int) -> int:
    """Simple interest for the full term"""
    return principal * rate * duration // (RATE_SCALE * SECONDS_PER_YEAR)


def repayment_amount(principal: int, rate: int, duration: int) -> int:
    """Principal plus interest owed to the lender"""
    return principal + interest_amount(principal, rate, duration)


def fee_amount(principal: int, rate: int) -> int:
    return principal * rate // RATE_SCALE


def split_fees(principal: int, fees: Sequence[Fee]) -> Tuple[int, List[int]]:
    """
    Split principal into the borrower's net amount and per-recipient fees.

    Raises:
        TotalFeeTooHigh: if the summed fee rate would consume the whole principal.
    """
    total_rate = sum(fee.rate for fee in fees)
    if total_rate >= RATE_SCALE:
        raise TotalFeeTooHigh(f"Total fee rate {total_rate} leaves nothing to the borrower")

    amounts = [fee_amount(principal, fee.rate) for fee in fees]
    return principal - sum(amounts), amounts
