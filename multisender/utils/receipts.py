"""
Turns a confirmed multisend receipt into per-recipient rows and a batch summary.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Union

from eth_abi import decode

from ..config import MULTISENDER_ABI
from .abi import as_bytes, decode_log, event_topic, find_entry
from .recipients import format_units

ERROR_SELECTOR = bytes.fromhex("08c379a0")
PANIC_SELECTOR = bytes.fromhex("4e487b71")

PANIC_CODES = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division by zero",
    0x21: "invalid enum value",
    0x22: "invalid storage byte array",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to zero-initialized function",
}


class RevertKind(Enum):
    ERROR = "Error(string)"
    PANIC = "Panic(uint256)"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class RevertReason:
    kind: RevertKind
    detail: Optional[str] = None

    def describe(self) -> str:
        if self.kind is RevertKind.ERROR:
            return self.detail or "reverted"
        if self.kind is RevertKind.PANIC:
            return f"panic: {self.detail}" if self.detail else "panic"
        return "reverted without reason" if self.detail is None else f"reverted ({self.detail})"


def classify_revert(data: Union[bytes, str, None]) -> RevertReason:
    raw = as_bytes(data)
    head, body = raw[:4], raw[4:]
    if head == ERROR_SELECTOR:
        try:
            return RevertReason(RevertKind.ERROR, decode(["string"], body)[0])
        except Exception:
            return RevertReason(RevertKind.ERROR)
    if head == PANIC_SELECTOR:
        try:
            code = decode(["uint256"], body)[0]
        except Exception:
            return RevertReason(RevertKind.PANIC)
        return RevertReason(RevertKind.PANIC, f"0x{code:02x} ({PANIC_CODES.get(code, 'unknown')})")
    return RevertReason(RevertKind.UNRECOGNIZED, "0x" + raw.hex() if raw else None)


@dataclass(frozen=True)
class ReceiptRow:
    index: int
    recipient: str
    amount: str
    status: str
    reason: Optional[str] = None
    raw_amount: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class BatchSummary:
    sender: str
    token: str
    total_requested: int
    success_count: int
    fail_count: int
    unsent_amount: int
    strict: bool


@dataclass
class ReceiptLedger:
    rows: List[ReceiptRow] = field(default_factory=list)
    summary: Optional[BatchSummary] = None

    @property
    def failed(self) -> List[ReceiptRow]:
        return [r for r in self.rows if not r.ok]


def _lower(addr: Any) -> str:
    return str(addr or "").lower()


def decode_receipt(receipt, contract_address: str, decimals: int = 18, abi=MULTISENDER_ABI) -> ReceiptLedger:
    """
    Decode TransferResult and BatchSummary events emitted by ``contract_address``.
    Logs from any other address (token Transfer events, Permit2) are ignored.
    """
    transfer_entry = find_entry(abi, "TransferResult", kind="event")
    summary_entry = find_entry(abi, "BatchSummary", kind="event")
    transfer_topic = event_topic(transfer_entry)
    summary_topic = event_topic(summary_entry)

    rows: List[ReceiptRow] = []
    summary: Optional[BatchSummary] = None
    for log in receipt["logs"]:
        if _lower(log["address"]) != _lower(contract_address):
            continue
        topics = list(log["topics"])
        if not topics:
            continue
        topic0 = as_bytes(topics[0])

        if topic0 == transfer_topic:
            ev = decode_log(transfer_entry, topics, log["data"])
            reason = None if ev["success"] else classify_revert(ev["returnData"]).describe()
            rows.append(ReceiptRow(
                index=int(ev["index"]),
                recipient=ev["recipient"],
                amount=format_units(ev["amount"], decimals),
                status="success" if ev["success"] else "failed",
                reason=reason,
                raw_amount=int(ev["amount"]),
            ))
        elif topic0 == summary_topic:
            ev = decode_log(summary_entry, topics, log["data"])
            summary = BatchSummary(
                sender=ev["sender"],
                token=ev["token"],
                total_requested=int(ev["totalRequested"]),
                success_count=int(ev["successCount"]),
                fail_count=int(ev["failCount"]),
                unsent_amount=int(ev["unsentAmount"]),
                strict=bool(ev["strict"]),
            )

    rows.sort(key=lambda r: r.index)

    if summary is None and rows:
        failed = [r for r in rows if not r.ok]
        summary = BatchSummary(
            sender="",
            token="",
            total_requested=sum(r.raw_amount for r in rows),
            success_count=len(rows) - len(failed),
            fail_count=len(failed),
            unsent_amount=sum(r.raw_amount for r in failed),
            strict=False,
        )
    return ReceiptLedger(rows=rows, summary=summary)
