from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ..config import MAX_RECIPIENTS_PER_TX
from .recipients import RecipientEntry


@dataclass(frozen=True)
class Batch:
    index: int
    start: int
    entries: Tuple[RecipientEntry, ...]

    @property
    def recipients(self) -> List[str]:
        return [e.address for e in self.entries]

    @property
    def amounts(self) -> List[int]:
        return [e.amount for e in self.entries]

    @property
    def total(self) -> int:
        return sum(e.amount for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def batch_count(n: int, cap: int = MAX_RECIPIENTS_PER_TX) -> int:
    if cap < 1:
        raise ValueError("cap must be at least 1")
    return -(-n // cap)


def plan_batches(entries: Sequence[RecipientEntry], cap: int = MAX_RECIPIENTS_PER_TX) -> List[Batch]:
    """Contiguous, in-order chunks of at most ``cap`` entries."""
    if cap < 1:
        raise ValueError("cap must be at least 1")
    entries = list(entries)
    return [
        Batch(index=i, start=start, entries=tuple(entries[start:start + cap]))
        for i, start in enumerate(range(0, len(entries), cap))
    ]
