import pytest
from eth_abi import decode
from eth_account import Account
from eth_account.messages import encode_typed_data

from multisender.config import PERMIT_EXPIRATION_SECONDS, PERMIT_SIG_DEADLINE_SECONDS
from multisender.utils.errors import AuthorizationError, ValidationError
from multisender.utils.permit import (
    MAX_UINT160, MAX_UINT48, NonceTracker, PermitAuthorizationManager, build_permit_single, permit_typed_data,
)

from conftest import addr

TOKEN = addr(0x70)
NOW = 1_700_000_000


def _approved_amounts(helper):
    return [decode(["address", "uint256"], c.data[4:])[1] for c in helper.sent]


def _manager(helper, wallet):
    seen = []
    mgr = PermitAuthorizationManager(helper, wallet, on_status=seen.append, clock=lambda: NOW)
    return mgr, seen


def test_permit_covers_exactly_the_amount():
    permit = build_permit_single(TOKEN, addr(5), 1234, 3, now=NOW)

    assert permit.details.amount == 1234
    assert permit.details.nonce == 3
    assert permit.details.expiration == NOW + PERMIT_EXPIRATION_SECONDS
    assert permit.sig_deadline == NOW + PERMIT_SIG_DEADLINE_SECONDS
    assert permit.spender == addr(5)
    assert permit.as_abi() == ((TOKEN, 1234, NOW + PERMIT_EXPIRATION_SECONDS, 3), addr(5),
                               NOW + PERMIT_SIG_DEADLINE_SECONDS)


@pytest.mark.parametrize("amount, nonce", [(0, 0), (MAX_UINT160 + 1, 0), (1, MAX_UINT48 + 1), (1, -1)])
def test_permit_bounds(amount, nonce):
    with pytest.raises(ValidationError):
        build_permit_single(TOKEN, addr(5), amount, nonce, now=NOW)


def test_typed_data_signature_recovers_to_owner(wallet):
    permit = build_permit_single(TOKEN, addr(5), 10 ** 6, 0, now=NOW)
    typed = permit_typed_data(permit, addr(0x22), 8453)

    assert typed["domain"] == {"name": "Permit2", "chainId": 8453, "verifyingContract": addr(0x22)}
    assert typed["primaryType"] == "PermitSingle"

    signature = wallet.sign_typed_data(typed)
    recovered = Account.recover_message(encode_typed_data(full_message=typed), signature=signature)
    assert recovered == wallet.address


def test_nonce_tracker_needs_seed():
    tracker = NonceTracker()
    assert not tracker.seeded
    with pytest.raises(ValidationError):
        tracker.advance()
    tracker.seed(4)
    assert tracker.advance() == 5
    assert tracker.current == 5


def test_nonce_seeded_once_and_advanced_per_confirmed_batch(helper, wallet):
    helper.registry = (0, 0, 7)
    mgr, _ = _manager(helper, wallet)

    assert mgr.seed_nonce(TOKEN) == 7
    first = mgr.sign_permit(TOKEN, 100)
    assert first.permit.details.nonce == 7
    assert first.permit.details.amount == 100

    # registry changes are not picked up mid-run
    helper.registry = (0, 0, 99)
    assert mgr.confirm_batch() == 8
    second = mgr.sign_permit(TOKEN, 50)
    assert second.permit.details.nonce == 8
    assert second.permit.spender == helper.cfg.MULTISENDER_ADDRESS
    assert helper.registry_reads == 1


def test_needs_approval(helper, wallet):
    mgr, _ = _manager(helper, wallet)
    helper.allowance = 99
    assert mgr.needs_approval(TOKEN, 100)
    helper.allowance = 100
    assert not mgr.needs_approval(TOKEN, 100)


def test_enough_allowance_sends_nothing(helper, wallet):
    helper.allowance = 500
    mgr, _ = _manager(helper, wallet)
    assert mgr.ensure_approval(TOKEN, 100) is False
    assert helper.sent == []


def test_approves_exact_amount_to_permit2(helper, wallet):
    mgr, seen = _manager(helper, wallet)
    assert mgr.ensure_approval(TOKEN, 100) is True

    assert _approved_amounts(helper) == [100]
    assert helper.sent[0].to == TOKEN
    spender = decode(["address", "uint256"], helper.sent[0].data[4:])[0]
    assert spender.lower() == helper.cfg.PERMIT2_ADDRESS.lower()
    assert mgr.allowance_cache[TOKEN] == 100
    assert TOKEN in mgr.registry_cache
    assert seen[-1] == "Approved. You can send now."


def test_reset_to_zero_fallback(helper, wallet):
    helper.allowance = 50
    helper.send_errors = {0: RuntimeError("approve from non-zero to non-zero allowance")}
    mgr, seen = _manager(helper, wallet)

    assert mgr.ensure_approval(TOKEN, 100) is True
    assert _approved_amounts(helper) == [100, 0, 100]
    assert any("Resetting to 0" in s for s in seen)


def test_fallback_failure_surfaces_original_error(helper, wallet):
    helper.allowance = 50
    first = RuntimeError("original failure")
    helper.send_errors = {0: first, 2: RuntimeError("second failure")}
    mgr, _ = _manager(helper, wallet)

    with pytest.raises(AuthorizationError) as exc:
        mgr.ensure_approval(TOKEN, 100)
    assert str(exc.value) == "original failure"
    assert exc.value.original is first


def test_no_fallback_from_zero_allowance(helper, wallet):
    helper.send_errors = {0: RuntimeError("user rejected the request")}
    mgr, _ = _manager(helper, wallet)

    with pytest.raises(AuthorizationError):
        mgr.ensure_approval(TOKEN, 100)
    assert len(helper.sent) == 1


def test_reverted_approval_is_a_failure(helper, wallet):
    helper.statuses = {0: 0}
    mgr, _ = _manager(helper, wallet)

    with pytest.raises(AuthorizationError) as exc:
        mgr.ensure_approval(TOKEN, 100)
    assert "reverted" in str(exc.value)
