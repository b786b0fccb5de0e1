"""
Execution state for one multisend run.

The executor owns a single frozen ``FlowState`` and replaces it through ``transition``;
renderers (console, tests) only read it. Per-batch phases repeat sequentially:

    IDLE -> PREPARING -> [AWAITING_SIGNATURE] -> SUBMITTED -> CONFIRMING -> CONFIRMED | FAILED
    CONFIRMED -> PREPARING (next batch)
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import MultisenderError


class Phase(Enum):
    IDLE = "Idle"
    PREPARING = "Preparing"
    AWAITING_SIGNATURE = "AwaitingSignature"
    SUBMITTED = "Submitted"
    CONFIRMING = "Confirming"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


class Event(Enum):
    START = "start"
    REQUEST_SIGNATURE = "request_signature"
    SUBMIT = "submit"
    WAIT = "wait"
    CONFIRM = "confirm"
    FAIL = "fail"
    NEXT_BATCH = "next_batch"
    RESET = "reset"


class InvalidTransition(MultisenderError):
    pass


_TABLE: Dict[Tuple[Phase, Event], Phase] = {
    (Phase.IDLE, Event.START): Phase.PREPARING,
    (Phase.PREPARING, Event.REQUEST_SIGNATURE): Phase.AWAITING_SIGNATURE,
    (Phase.PREPARING, Event.SUBMIT): Phase.SUBMITTED,
    (Phase.AWAITING_SIGNATURE, Event.SUBMIT): Phase.SUBMITTED,
    (Phase.SUBMITTED, Event.WAIT): Phase.CONFIRMING,
    (Phase.CONFIRMING, Event.CONFIRM): Phase.CONFIRMED,
    (Phase.CONFIRMED, Event.NEXT_BATCH): Phase.PREPARING,
    (Phase.CONFIRMED, Event.RESET): Phase.IDLE,
    (Phase.FAILED, Event.RESET): Phase.IDLE,
}

_FAILABLE = {Phase.PREPARING, Phase.AWAITING_SIGNATURE, Phase.SUBMITTED, Phase.CONFIRMING}


@dataclass(frozen=True)
class FlowState:
    phase: Phase = Phase.IDLE
    batch_index: int = 0
    batch_count: int = 0
    status: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.phase not in (Phase.IDLE, Phase.CONFIRMED, Phase.FAILED)

    @property
    def label(self) -> str:
        return f"{self.batch_index + 1}/{self.batch_count}"


def next_phase(phase: Phase, event: Event) -> Phase:
    if event is Event.FAIL and phase in _FAILABLE:
        return Phase.FAILED
    try:
        return _TABLE[(phase, event)]
    except KeyError:
        raise InvalidTransition(f"{event.value} is not allowed from {phase.value}") from None


def transition(state: FlowState, event: Event, **changes) -> FlowState:
    phase = next_phase(state.phase, event)
    if event is Event.NEXT_BATCH:
        changes.setdefault("batch_index", state.batch_index + 1)
        changes.setdefault("tx_hash", None)
    if event is Event.RESET:
        return FlowState()
    return replace(state, phase=phase, **changes)
