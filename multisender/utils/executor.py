"""
Sequential batch execution.

One ``run`` plans the validated list into batches and drives each through
prepare -> (permit signature) -> submit -> confirm before touching the next one.
A failed batch stops the run; confirmed batches stay confirmed and are reported.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from ..config import MAX_RECIPIENTS_PER_TX, MULTISENDER_ABI, SPONSORED_POLL_INTERVAL, SPONSORED_TIMEOUT
from .abi import ContractCall, encode_call
from .batching import Batch, plan_batches
from .builder_codes import append_builder_codes
from .errors import CancelledError, ConfirmationError, ValidationError, error_message, humanize_error
from .receipts import BatchSummary, ReceiptRow, decode_receipt
from .recipients import AssetMode, ParsedBatchRequest
from .sponsored import looks_like_unsupported_send_calls, send_sponsored_calls, supports_paymaster_service
from .state import Event, FlowState, transition

logger = logging.getLogger(__name__)


class ExecutionMode(Enum):
    STRICT = "strict"
    BEST_EFFORT = "best_effort"


FUNCTION_NAMES = {
    (AssetMode.ETH, ExecutionMode.STRICT): "sendETH",
    (AssetMode.ETH, ExecutionMode.BEST_EFFORT): "sendETHBestEffort",
    (AssetMode.ERC20, ExecutionMode.STRICT): "sendERC20Permit2",
    (AssetMode.ERC20, ExecutionMode.BEST_EFFORT): "sendERC20Permit2BestEffort",
}


def build_batch_call(request: ParsedBatchRequest, batch: Batch, execution_mode: ExecutionMode, multisender: str,
                     permit=None, signature: Optional[bytes] = None, builder_codes: Sequence[str] = (),
                     abi=MULTISENDER_ABI) -> ContractCall:
    name = FUNCTION_NAMES[(request.mode, execution_mode)]
    if request.mode is AssetMode.ETH:
        data = encode_call(abi, name, [batch.recipients, batch.amounts])
        value = batch.total
    else:
        if permit is None or signature is None:
            raise ValidationError("Token batches need a signed permit.")
        data = encode_call(abi, name, [permit.as_abi(), bytes(signature), batch.recipients, batch.amounts])
        value = 0
    return ContractCall(to=multisender, data=append_builder_codes(data, builder_codes), value=value)


@dataclass
class BatchOutcome:
    index: int
    tx_hash: str
    recipient_count: int
    total: int
    rows: List[ReceiptRow] = field(default_factory=list)
    summary: Optional[BatchSummary] = None


@dataclass
class RunReport:
    batch_count: int
    outcomes: List[BatchOutcome] = field(default_factory=list)
    error: Optional[str] = None
    failed_batch: Optional[int] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled and len(self.outcomes) == self.batch_count

    @property
    def rows(self) -> List[ReceiptRow]:
        return [r for o in self.outcomes for r in o.rows]


class TransferExecutor:
    def __init__(self, helper, wallet, chain_config, permits=None, sponsor_requester=None,
                 use_sponsored: bool = False, cap: int = MAX_RECIPIENTS_PER_TX, receipt_timeout: int = 300):
        self.helper = helper
        self.wallet = wallet
        self.cfg = chain_config
        self.permits = permits
        self.sponsor_requester = sponsor_requester
        self.use_sponsored = use_sponsored
        self.cap = cap
        self.receipt_timeout = receipt_timeout

        self.multisender = chain_config.MULTISENDER_ADDRESS
        self.builder_codes = tuple(getattr(chain_config, "BUILDER_CODES", ()) or ())
        self.state = FlowState()
        self._on_status: Callable[[FlowState], None] = lambda _s: None
        self._sponsored_ok: Optional[bool] = None

    # ---------- state ----------
    def _emit(self, event: Event, **changes) -> FlowState:
        self.state = transition(self.state, event, **changes)
        if self.state.status:
            logger.info(self.state.status)
        self._on_status(self.state)
        return self.state

    # ---------- checks ----------
    def _entries(self, request: ParsedBatchRequest):
        result = request.result
        if not result.ok:
            raise ValidationError(f"Invalid line: {result.invalid_line}")
        if not result.recipients:
            raise ValidationError("No recipients to send to.")
        if request.mode is AssetMode.ERC20:
            if not request.token:
                raise ValidationError("Token address is required for token transfers.")
            if request.decimals is None or not result.decimals_ready:
                raise ValidationError("Token decimals are not known yet.")
            if self.permits is None:
                raise ValidationError("Token transfers need a permit manager.")
        return result.entries

    # ---------- submission ----------
    def _sponsorship_enabled(self) -> bool:
        if not self.use_sponsored:
            return False
        if self._sponsored_ok is None:
            if self.sponsor_requester is None or not getattr(self.cfg, "PAYMASTER_URL", None):
                logger.info("Sponsored sending needs PAYMASTER_URL and a wallet endpoint; sending directly")
                self._sponsored_ok = False
            else:
                self._sponsored_ok = supports_paymaster_service(
                    self.sponsor_requester, self.wallet.address, self.helper.chain_id)
                if not self._sponsored_ok:
                    logger.info("Wallet does not advertise paymasterService on chain %s; sending directly",
                                self.helper.chain_id)
        return self._sponsored_ok

    def _submit(self, call: ContractCall, cancel_event: Optional[threading.Event]) -> str:
        if self._sponsorship_enabled():
            try:
                return send_sponsored_calls(
                    self.sponsor_requester, self.wallet.address, self.helper.chain_id, self.cfg.PAYMASTER_URL,
                    [call.as_wallet_call()], poll_interval=SPONSORED_POLL_INTERVAL, timeout=SPONSORED_TIMEOUT,
                    cancel_event=cancel_event,
                )
            except Exception as e:
                if not looks_like_unsupported_send_calls(e):
                    raise
                logger.warning("wallet_sendCalls unsupported (%s); sending directly", error_message(e))
                self._sponsored_ok = False
        return self.helper.send_call(self.wallet, call)

    # ---------- run ----------
    def run(self, request: ParsedBatchRequest, execution_mode: ExecutionMode,
            on_status: Optional[Callable[[FlowState], None]] = None,
            cancel_event: Optional[threading.Event] = None) -> RunReport:
        entries = self._entries(request)
        batches = plan_batches(entries, self.cap)
        report = RunReport(batch_count=len(batches))
        decimals = request.unit_decimals
        self._on_status = on_status or (lambda _s: None)

        if request.mode is AssetMode.ERC20:
            self.permits.seed_nonce(request.token)
            if self.permits.needs_approval(request.token, sum(e.amount for e in entries)):
                raise ValidationError("Approve the token for Permit2 before sending.")

        self.state = FlowState()
        n = len(batches)
        for batch in batches:
            label = f"{batch.index + 1}/{n}"
            if batch.index == 0:
                self._emit(Event.START, batch_index=0, batch_count=n, status=f"Submitting batch {label}…", error=None)
            else:
                if cancel_event is not None and cancel_event.is_set():
                    report.cancelled = True
                    self.state = FlowState(phase=self.state.phase, batch_index=self.state.batch_index,
                                           batch_count=n, status=f"Stopped after batch {batch.index}/{n}.")
                    self._on_status(self.state)
                    break
                self._emit(Event.NEXT_BATCH, status=f"Submitting batch {label}…")

            try:
                outcome = self._run_batch(request, batch, execution_mode, label, decimals, cancel_event)
            except Exception as e:
                message = humanize_error(e)
                logger.warning("Batch %s failed: %s", label, error_message(e))
                report.error = message
                report.failed_batch = batch.index
                report.cancelled = isinstance(e, CancelledError)
                self._emit(Event.FAIL, status=message, error=message)
                break

            report.outcomes.append(outcome)
            if batch.index + 1 == n:
                done = "All batches sent successfully." if n > 1 else "Batch sent successfully."
                self._emit(Event.CONFIRM, status=done)
            else:
                self._emit(Event.CONFIRM, status=f"Batch {label} confirmed. Continuing…")
        return report

    def _run_batch(self, request: ParsedBatchRequest, batch: Batch, execution_mode: ExecutionMode, label: str,
                   decimals: int, cancel_event: Optional[threading.Event]) -> BatchOutcome:
        permit = signature = None
        if request.mode is AssetMode.ERC20:
            self._emit(Event.REQUEST_SIGNATURE, status=f"Sign the permit for batch {label}…")
            signed = self.permits.sign_permit(request.token, batch.total)
            permit, signature = signed.permit, signed.signature

        call = build_batch_call(request, batch, execution_mode, self.multisender,
                                permit=permit, signature=signature, builder_codes=self.builder_codes)
        tx_hash = self._submit(call, cancel_event)
        self._emit(Event.SUBMIT, tx_hash=tx_hash, status=f"Batch {label} submitted. Waiting for confirmation…")
        self._emit(Event.WAIT)

        receipt = self.helper.wait_for_receipt(tx_hash, timeout=self.receipt_timeout, cancel_event=cancel_event)
        if receipt["status"] != 1:
            raise ConfirmationError(f"Batch {label} reverted on-chain ({tx_hash}).")

        if request.mode is AssetMode.ERC20:
            self.permits.confirm_batch()

        ledger = decode_receipt(receipt, self.multisender, decimals)
        return BatchOutcome(index=batch.index, tx_hash=tx_hash, recipient_count=len(batch),
                            total=batch.total, rows=ledger.rows, summary=ledger.summary)
