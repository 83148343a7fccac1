"""Integer cost estimate shared by every scanner."""
from dataclasses import dataclass

BPS = 10_000


@dataclass(frozen=True)
class CostBreakdown:
    """Components of an opportunity's estimated cost, all in wei."""
    gas_cost: int
    protocol_fee: int
    borrow_fee: int
    slippage_allowance: int

    @property
    def total(self) -> int:
        return self.gas_cost + self.protocol_fee + self.borrow_fee + self.slippage_allowance


def slippage_allowance(expected_gross_gain: int, slippage_bps: int) -> int:
    """Fraction of the gain reserved for adverse price movement, rounded up."""
    return (expected_gross_gain * slippage_bps + BPS - 1) // BPS


def estimate_cost(
    gas_units: int,
    gas_price: int,
    expected_gross_gain: int,
    slippage_bps: int,
    protocol_fee: int = 0,
    borrow_fee: int = 0,
) -> CostBreakdown:
    """Gas at the current fee market plus fees plus slippage allowance."""
    if gas_units < 0 or gas_price < 0:
        raise ValueError("gas units and gas price must be non-negative")
    return CostBreakdown(
        gas_cost=gas_units * gas_price,
        protocol_fee=protocol_fee,
        borrow_fee=borrow_fee,
        slippage_allowance=slippage_allowance(expected_gross_gain, slippage_bps),
    )
