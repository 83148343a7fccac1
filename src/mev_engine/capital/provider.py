"""
Capital Provider for flash-funded plans.

Wraps a plan's trade steps with a flash-borrow step in front and the matching
repayment behind, so borrow, trade and repay land in the same transaction and
revert together.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from web3 import Web3

from ..chain.contracts import (
    APPROVE,
    APPROVE_TYPES,
    FLASH_LOAN_SIMPLE,
    FLASH_LOAN_TYPES,
    SELECTORS,
)
from ..config.strategy_config import CapitalConfig
from ..errors import PlanConstructionError
from ..opportunity.models import FundingSpec, PlanStep, saturating_sub

logger = logging.getLogger(__name__)

BPS = 10_000
BORROW_LABEL = "borrow"
REPAY_LABEL = "repay"


@dataclass(frozen=True)
class FlashLoanFacility:
    """Flash-borrow terms for one asset on one lending pool."""
    asset: str
    lending_pool: str
    fee_bps: int
    max_amount: int
    provider: str = "aave_v3"

    def fee_for(self, amount: int) -> int:
        """Borrow fee, rounded up so repayment always covers the pool."""
        return (amount * self.fee_bps + BPS - 1) // BPS


def calculate_dynamic_loan_amount(expected_profit: int, gas_fee: int, slippage: float) -> int:
    """
    Rough loan size from an expected profit.

    Exploratory heuristic only: discounts the profit by the slippage fraction,
    then subtracts gas, clamping at zero. Settlement math downstream stays in
    integers.
    """
    slippage_factor = max(0.0, 1.0 - slippage)
    max_loan_amount = int(expected_profit * slippage_factor)
    return saturating_sub(max_loan_amount, gas_fee)


class CapitalProvider:
    """Decides and attaches transient funding for plans."""

    def __init__(self, facilities: Iterable[FlashLoanFacility], receiver: str):
        """
        Initialize capital provider.

        Args:
            facilities: Flash-borrow facilities, at most one per asset
            receiver: Executor contract that receives and repays borrowed funds
        """
        self.receiver = Web3.to_checksum_address(receiver)
        self.facilities: Dict[str, FlashLoanFacility] = {}
        for facility in facilities:
            asset = Web3.to_checksum_address(facility.asset)
            if asset in self.facilities:
                raise ValueError(f"Duplicate flash loan facility for {asset}")
            self.facilities[asset] = facility

        self.stats = {
            "plans_funded": 0,
            "funding_refused": 0,
        }

    @classmethod
    def from_config(cls, config: CapitalConfig, receiver: str) -> "CapitalProvider":
        return cls(
            [
                FlashLoanFacility(
                    asset=f.asset,
                    lending_pool=f.lending_pool,
                    fee_bps=f.fee_bps,
                    max_amount=f.max_amount,
                    provider=f.provider,
                )
                for f in config.facilities
            ],
            receiver,
        )

    def has_facility(self, asset: str) -> bool:
        return Web3.to_checksum_address(asset) in self.facilities

    def facility_for(self, asset: str) -> FlashLoanFacility:
        facility = self.facilities.get(Web3.to_checksum_address(asset))
        if facility is None:
            raise PlanConstructionError(f"No flash loan facility configured for {asset}")
        return facility

    def flash_fee(self, asset: str, amount: int) -> int:
        """Fee to borrow amount of asset. Raises PlanConstructionError without a facility."""
        return self.facility_for(asset).fee_for(amount)

    def max_borrowable(self, asset: str) -> Optional[int]:
        facility = self.facilities.get(Web3.to_checksum_address(asset))
        return facility.max_amount if facility else None

    def wrap(self, steps: Sequence[PlanStep], asset: str, amount: int) -> Tuple[Tuple[PlanStep, ...], FundingSpec]:
        """
        Prepend a borrow and append the matching repayment.

        Raises:
            PlanConstructionError: no facility for the asset, amount out of
                bounds, or the steps are already funded
        """
        if any(step.label in (BORROW_LABEL, REPAY_LABEL) for step in steps):
            raise PlanConstructionError("Plan steps already carry funding")
        if amount <= 0:
            raise PlanConstructionError(f"Cannot borrow non-positive amount {amount}")

        try:
            facility = self.facility_for(asset)
        except PlanConstructionError:
            self.stats["funding_refused"] += 1
            raise
        if amount > facility.max_amount:
            self.stats["funding_refused"] += 1
            raise PlanConstructionError(
                f"Borrow of {amount} exceeds {facility.provider} limit {facility.max_amount} for {asset}"
            )

        funding = FundingSpec(
            asset=Web3.to_checksum_address(asset),
            amount=amount,
            fee=facility.fee_for(amount),
            lending_pool=facility.lending_pool,
        )

        borrow = PlanStep(
            target=facility.lending_pool,
            selector=SELECTORS[FLASH_LOAN_SIMPLE],
            arg_types=FLASH_LOAN_TYPES,
            args=(self.receiver, funding.asset, amount, b"", 0),
            label=BORROW_LABEL,
        )
        repay = PlanStep(
            target=funding.asset,
            selector=SELECTORS[APPROVE],
            arg_types=APPROVE_TYPES,
            args=(facility.lending_pool, funding.repay_amount),
            label=REPAY_LABEL,
        )

        self.stats["plans_funded"] += 1
        logger.debug(
            f"Funding {amount} of {funding.asset} via {facility.provider} (fee {funding.fee})"
        )
        return (borrow, *steps, repay), funding
