"""Flash-borrow funding for execution plans."""
from .provider import (
    BORROW_LABEL,
    REPAY_LABEL,
    CapitalProvider,
    FlashLoanFacility,
    calculate_dynamic_loan_amount,
)

__all__ = [
    "CapitalProvider",
    "FlashLoanFacility",
    "calculate_dynamic_loan_amount",
    "BORROW_LABEL",
    "REPAY_LABEL",
]
