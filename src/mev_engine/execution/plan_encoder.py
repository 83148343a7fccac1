"""
Plan encoding for the executor contract.

The whole plan, funding included, becomes a single executePlan call so the
chain applies it atomically: any failing step or unmet minimum output
reverts everything.
"""
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import encode
from web3 import Web3

from ..chain.contracts import EXECUTE_PLAN, SELECTORS
from ..opportunity.models import ExecutionPlan, FeeBid, PlanStep

STEP_TUPLE_TYPE = "(address,bytes4,bytes,uint256,bool)[]"


def encode_step(step: PlanStep) -> Tuple[str, bytes, bytes, int, bool]:
    """(target, selector, encoded args, min output, uses prior output)."""
    return (
        Web3.to_checksum_address(step.target),
        step.selector,
        encode(list(step.arg_types), list(step.args)),
        step.min_output,
        step.uses_prior_output,
    )


class PlanEncoder:
    """Builds executor transactions for plans."""

    def __init__(self, executor_address: str, chain_id: int):
        self.executor_address = Web3.to_checksum_address(executor_address)
        self.chain_id = chain_id

    def encode_calldata(self, plan: ExecutionPlan) -> bytes:
        steps: List[Tuple[str, bytes, bytes, int, bool]] = [encode_step(s) for s in plan.steps]
        return SELECTORS[EXECUTE_PLAN] + encode([STEP_TUPLE_TYPE, "uint256"], [steps, plan.deadline_block])

    def build_call(self, plan: ExecutionPlan, sender: str) -> Dict[str, Any]:
        """Transaction fields for a dry run."""
        return {
            "from": Web3.to_checksum_address(sender),
            "to": self.executor_address,
            "data": Web3.to_hex(self.encode_calldata(plan)),
            "value": 0,
            "gas": plan.gas_limit,
        }

    def build_transaction(
        self, plan: ExecutionPlan, sender: str, nonce: int, fee_bid: FeeBid, gas_limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """Signed-ready EIP-1559 transaction for one attempt."""
        tx = self.build_call(plan, sender)
        tx.update({
            "nonce": nonce,
            "chainId": self.chain_id,
            "type": 2,
            "gas": gas_limit or plan.gas_limit,
            "maxFeePerGas": fee_bid.max_fee_per_gas,
            "maxPriorityFeePerGas": fee_bid.max_priority_fee_per_gas,
        })
        return tx
