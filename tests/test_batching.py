import pytest

from multisender.utils.batching import batch_count, plan_batches
from multisender.utils.recipients import RecipientEntry

from conftest import addr


def _entries(n):
    return [RecipientEntry(addr(i + 1), i + 1) for i in range(n)]


def test_1200_entries_split_500_500_200():
    entries = _entries(1200)
    batches = plan_batches(entries, 500)

    assert [len(b) for b in batches] == [500, 500, 200]
    assert [b.index for b in batches] == [0, 1, 2]
    assert [b.start for b in batches] == [0, 500, 1000]
    assert [e for b in batches for e in b.entries] == entries
    assert sum(b.total for b in batches) == sum(e.amount for e in entries)


def test_501_entries_give_two_batches():
    batches = plan_batches(_entries(501), 500)
    assert [len(b) for b in batches] == [500, 1]
    assert batch_count(501, 500) == 2


def test_default_cap_and_small_lists():
    assert len(plan_batches(_entries(3))) == 1
    assert plan_batches([]) == []
    assert batch_count(0) == 0
    assert batch_count(500) == 1


def test_batch_exposes_parallel_lists():
    batch = plan_batches(_entries(3), 2)[1]
    assert batch.recipients == [addr(3)]
    assert batch.amounts == [3]
    assert batch.total == 3


@pytest.mark.parametrize("cap", [0, -1])
def test_cap_must_be_positive(cap):
    with pytest.raises(ValueError):
        plan_batches(_entries(2), cap)
    with pytest.raises(ValueError):
        batch_count(2, cap)
