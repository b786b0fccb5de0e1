"""
Permit2 spend authorization for ERC-20 batches.

Two layers:
- the token grants Permit2 an on-chain allowance (``ensure_approval``), with a
  reset-to-zero fallback for tokens that refuse non-zero -> non-zero changes;
- every batch carries an off-chain ``PermitSingle`` signed for exactly that batch's
  total. Its nonce comes from a local counter seeded once from the Permit2 registry
  and bumped only after a batch confirms.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .abi import ContractCall, encode_call
from .errors import AuthorizationError, ConfirmationError, ValidationError, error_message

from ..config import PERMIT_EXPIRATION_SECONDS, PERMIT_SIG_DEADLINE_SECONDS

logger = logging.getLogger(__name__)

MAX_UINT160 = 2 ** 160 - 1
MAX_UINT48 = 2 ** 48 - 1


@dataclass(frozen=True)
class PermitDetails:
    token: str
    amount: int
    expiration: int
    nonce: int


@dataclass(frozen=True)
class PermitSingle:
    details: PermitDetails
    spender: str
    sig_deadline: int

    def as_abi(self) -> Tuple:
        d = self.details
        return ((d.token, d.amount, d.expiration, d.nonce), self.spender, self.sig_deadline)

    def message(self) -> dict:
        d = self.details
        return {
            "details": {"token": d.token, "amount": d.amount, "expiration": d.expiration, "nonce": d.nonce},
            "spender": self.spender,
            "sigDeadline": self.sig_deadline,
        }


@dataclass(frozen=True)
class SignedPermit:
    permit: PermitSingle
    signature: bytes


def build_permit_single(token: str, spender: str, amount: int, nonce: int, now: Optional[int] = None,
                        expiration_seconds: int = PERMIT_EXPIRATION_SECONDS,
                        sig_deadline_seconds: int = PERMIT_SIG_DEADLINE_SECONDS) -> PermitSingle:
    if amount <= 0:
        raise ValidationError("Permit amount must be positive.")
    if amount > MAX_UINT160:
        raise ValidationError("Permit amount exceeds uint160.")
    if nonce < 0 or nonce > MAX_UINT48:
        raise ValidationError("Permit nonce out of uint48 range.")
    now = int(time.time()) if now is None else int(now)
    return PermitSingle(
        details=PermitDetails(token=token, amount=int(amount), expiration=now + expiration_seconds, nonce=int(nonce)),
        spender=spender,
        sig_deadline=now + sig_deadline_seconds,
    )


def permit_typed_data(permit: PermitSingle, permit2_address: str, chain_id: int) -> dict:
    """EIP-712 full message for Permit2 ``PermitSingle``."""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "PermitDetails": [
                {"name": "token", "type": "address"},
                {"name": "amount", "type": "uint160"},
                {"name": "expiration", "type": "uint48"},
                {"name": "nonce", "type": "uint48"},
            ],
            "PermitSingle": [
                {"name": "details", "type": "PermitDetails"},
                {"name": "spender", "type": "address"},
                {"name": "sigDeadline", "type": "uint256"},
            ],
        },
        "primaryType": "PermitSingle",
        "domain": {
            "name": "Permit2",
            "chainId": int(chain_id),
            "verifyingContract": permit2_address,
        },
        "message": permit.message(),
    }


class NonceTracker:
    """Running Permit2 nonce for one (owner, token, spender) during a run."""

    def __init__(self):
        self._value: Optional[int] = None

    @property
    def seeded(self) -> bool:
        return self._value is not None

    @property
    def current(self) -> int:
        if self._value is None:
            raise ValidationError("Permit nonce was not seeded from the registry.")
        return self._value

    def seed(self, value: int) -> None:
        self._value = int(value)

    def advance(self) -> int:
        self._value = self.current + 1
        return self._value


class PermitAuthorizationManager:
    def __init__(self, helper, wallet, on_status: Optional[Callable[[str], None]] = None,
                 clock: Callable[[], float] = time.time):
        self.helper = helper
        self.wallet = wallet
        self.permit2 = helper.cfg.PERMIT2_ADDRESS
        self.spender = helper.cfg.MULTISENDER_ADDRESS
        self.chain_id = helper.chain_id
        self.on_status = on_status or (lambda _msg: None)
        self.clock = clock

        self.nonce = NonceTracker()
        self.allowance_cache: Dict[str, int] = {}
        self.registry_cache: Dict[str, Tuple[int, int, int]] = {}

    # ---- reads
    def token_allowance(self, token: str) -> int:
        value = self.helper.check_allowance(token, self.wallet.address, self.permit2)
        self.allowance_cache[token] = value
        return value

    def registry_allowance(self, token: str) -> Tuple[int, int, int]:
        value = self.helper.permit2_allowance(self.wallet.address, token, self.spender)
        self.registry_cache[token] = value
        return value

    def needs_approval(self, token: str, required: int) -> bool:
        return self.token_allowance(token) < required

    # ---- on-chain approval
    def _approve(self, token: str, amount: int, label: str) -> str:
        call = ContractCall(to=token, data=encode_call(self.helper.erc20_abi, "approve", [self.permit2, int(amount)]))
        tx_hash = self.helper.send_call(self.wallet, call)
        self.on_status(f"{label} submitted. Waiting for confirmation…")
        receipt = self.helper.wait_for_receipt(tx_hash)
        if receipt["status"] != 1:
            raise ConfirmationError(f"{label} transaction {tx_hash} reverted.")
        return tx_hash

    def ensure_approval(self, token: str, required: int) -> bool:
        """
        Make sure Permit2 may pull ``required`` from the owner. Returns True when an
        approval was sent. Approves the exact amount, never unlimited.
        """
        current = self.token_allowance(token)
        if current >= required:
            return False

        self.on_status("Preparing approval…")
        try:
            self._approve(token, required, "Approval")
        except Exception as first:
            message = error_message(first)
            if not (current > 0 and current != required):
                raise AuthorizationError(message, original=first) from first

            # USDT-style tokens reject non-zero -> non-zero allowance changes
            logger.warning("approve(%s) failed with allowance %s; resetting to 0 first: %s", required, current, message)
            self.on_status("Approval failed (token requires reset). Resetting to 0…")
            try:
                self._approve(token, 0, "Reset")
                self._approve(token, required, "Approval")
            except Exception as second:
                logger.warning("reset-then-approve failed: %s", error_message(second))
                raise AuthorizationError(message, original=first) from second

        self.token_allowance(token)
        self.registry_allowance(token)
        self.on_status("Approved. You can send now.")
        return True

    # ---- off-chain permits
    def seed_nonce(self, token: str) -> int:
        _, _, nonce = self.registry_allowance(token)
        self.nonce.seed(nonce)
        return nonce

    def build_permit(self, token: str, amount: int, now: Optional[int] = None) -> PermitSingle:
        now = int(self.clock()) if now is None else now
        return build_permit_single(token, self.spender, amount, self.nonce.current, now=now)

    def sign_permit(self, token: str, amount: int) -> SignedPermit:
        permit = self.build_permit(token, amount)
        typed = permit_typed_data(permit, self.permit2, self.chain_id)
        return SignedPermit(permit=permit, signature=self.wallet.sign_typed_data(typed))

    def confirm_batch(self) -> int:
        return self.nonce.advance()
