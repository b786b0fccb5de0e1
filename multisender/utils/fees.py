"""
Pre-flight network fee estimate for ETH batches.

On OP Stack chains the cost is the L2 execution fee plus the L1 data fee quoted by
the GasPriceOracle predeploy. Token batches are not estimated: the permit signature
is only produced at send time, so the exact calldata is unknown beforehand.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from web3 import Web3

from .abi import ContractCall
from .errors import error_message
from .recipients import AssetMode

logger = logging.getLogger(__name__)

PLACEHOLDER = "—"


@dataclass(frozen=True)
class FeeEstimate:
    available: bool
    gas: int = 0
    gas_price: int = 0
    l2_fee: int = 0
    l1_fee: int = 0
    reason: Optional[str] = None

    @property
    def total(self) -> Optional[int]:
        return self.l2_fee + self.l1_fee if self.available else None


def estimate_batch_fee(helper, chain_config, sender: str, call: ContractCall, mode: AssetMode) -> FeeEstimate:
    if mode is AssetMode.ERC20:
        return FeeEstimate(available=False, reason="unavailable for token transfers")

    try:
        gas = helper.estimate_gas(sender, call)
        gas_price = helper.gas_price()
    except Exception as e:
        logger.warning("Fee estimate failed: %s", error_message(e))
        return FeeEstimate(available=False, reason=error_message(e))

    l1_fee = 0
    if getattr(chain_config, "IS_OP_STACK", False):
        try:
            l1_fee = helper.get_l1_fee(call.data)
        except Exception as e:
            logger.warning("L1 fee lookup failed, showing L2 fee only: %s", error_message(e))

    return FeeEstimate(available=True, gas=gas, gas_price=gas_price, l2_fee=gas * gas_price, l1_fee=l1_fee)


def estimate_run_fee(helper, chain_config, sender: str, calls: Iterable[ContractCall], mode: AssetMode) -> FeeEstimate:
    """Sum of per-batch estimates; unavailable as soon as one batch is."""
    gas = l2 = l1 = 0
    gas_price = 0
    for call in calls:
        est = estimate_batch_fee(helper, chain_config, sender, call, mode)
        if not est.available:
            return est
        gas += est.gas
        l2 += est.l2_fee
        l1 += est.l1_fee
        gas_price = est.gas_price
    return FeeEstimate(available=True, gas=gas, gas_price=gas_price, l2_fee=l2, l1_fee=l1)


def format_fee_eth(wei: Optional[int]) -> str:
    if wei is None:
        return PLACEHOLDER
    if wei == 0:
        return "0 ETH"
    eth = Web3.from_wei(int(wei), "ether")
    if eth < Decimal("0.000001"):
        return "< 0.000001 ETH"
    return f"{eth:.6f} ETH"
