import threading
from unittest.mock import MagicMock

import pytest
import requests

from multisender.utils.errors import CancelledError, SponsoredCallTimeout, SponsorshipError, WalletRpcError
from multisender.utils.sponsored import (
    http_requester, is_user_rejected, looks_like_unsupported_send_calls, looks_like_version_issue,
    provider_requester, send_sponsored_calls, supports_paymaster_service,
)

from conftest import addr

SENDER = addr(0x5E)
CALLS = [{"to": addr(0xC0), "data": "0x1234", "value": "0x0"}]
TX = "0x" + "ab" * 32


class FakeWallet:
    """Scripted EIP-1193 endpoint: each method pops the next response (value or exception)."""

    def __init__(self, **script):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls = []

    def __call__(self, method, params=None):
        self.calls.append((method, params))
        queue = self.script[method]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def sent_versions(self):
        return [p[0]["version"] for m, p in self.calls if m == "wallet_sendCalls"]


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def _send(wallet, clock=None, **kw):
    clock = clock or Clock()
    return send_sponsored_calls(wallet, SENDER, 8453, "https://paymaster.example", CALLS,
                                sleep=clock.sleep, clock=clock, **kw)


# ---- capabilities

def test_paymaster_support_by_hex_chain_id():
    wallet = FakeWallet(wallet_getCapabilities=[{"0x2105": {"paymasterService": {"supported": True}}}])
    assert supports_paymaster_service(wallet, SENDER, 8453)


def test_paymaster_support_by_decimal_chain_id():
    wallet = FakeWallet(wallet_getCapabilities=[{"8453": {"paymasterService": {"supported": True}}}])
    assert supports_paymaster_service(wallet, SENDER, 8453)


def test_paymaster_unsupported_or_error():
    assert not supports_paymaster_service(FakeWallet(wallet_getCapabilities=[{}]), SENDER, 8453)
    failing = FakeWallet(wallet_getCapabilities=[WalletRpcError(-32601, "Method not found")])
    assert not supports_paymaster_service(failing, SENDER, 8453)


# ---- rejection detection

def test_user_rejected_by_code_and_message():
    assert is_user_rejected(WalletRpcError(4001, "whatever"))
    assert is_user_rejected(RuntimeError("User denied transaction signature"))
    assert is_user_rejected({"message": "The user rejected the request."})
    assert not is_user_rejected(RuntimeError("insufficient funds"))


def test_user_rejected_nested():
    assert is_user_rejected({"cause": {"data": {"originalError": {"code": 4001}}}})
    assert is_user_rejected(WalletRpcError(-32000, "wrapped", data={"details": {"message": "user rejected"}}))

    try:
        try:
            raise WalletRpcError(4001, "nope")
        except WalletRpcError as inner:
            raise SponsorshipError("outer") from inner
    except SponsorshipError as outer:
        assert is_user_rejected(outer)


def test_user_rejected_handles_cycles():
    a = {"message": "x"}
    b = {"cause": a}
    a["cause"] = b
    assert not is_user_rejected(a)


def test_error_shape_predicates():
    assert looks_like_unsupported_send_calls(RuntimeError("wallet_sendCalls is not supported"))
    assert looks_like_unsupported_send_calls(WalletRpcError(-32601, "Method not found"))
    assert looks_like_version_issue(WalletRpcError(-32000, "bad"))
    assert looks_like_version_issue(RuntimeError("Version not supported"))
    assert not looks_like_version_issue(RuntimeError("boom"))


# ---- send + poll

def test_payload_shape_and_immediate_hash():
    wallet = FakeWallet(
        wallet_sendCalls=["bundle-1"],
        wallet_getCallsStatus=[{"status": 100, "receipts": [{"transactionHash": TX}]}],
    )
    assert _send(wallet) == TX

    payload = wallet.calls[0][1][0]
    assert payload["version"] == "2.0.0"
    assert payload["chainId"] == "0x2105"
    assert payload["from"] == SENDER
    assert payload["atomicRequired"] is True
    assert payload["calls"] == CALLS
    assert payload["capabilities"] == {"paymasterService": {"url": "https://paymaster.example"}}
    assert payload["id"]
    assert wallet.calls[1] == ("wallet_getCallsStatus", ["bundle-1"])


def test_missing_value_defaults_to_zero():
    wallet = FakeWallet(wallet_sendCalls=["b"], wallet_getCallsStatus=[{"transactionHash": TX}])
    send_sponsored_calls(wallet, SENDER, 8453, "u", [{"to": addr(1), "data": "0x"}], sleep=lambda s: None)
    assert wallet.calls[0][1][0]["calls"][0]["value"] == "0x0"


def test_version_mismatch_retries_once_with_legacy_version():
    wallet = FakeWallet(
        wallet_sendCalls=[WalletRpcError(-32000, "Version not supported"), {"id": "bundle-2"}],
        wallet_getCallsStatus=[{"status": 200, "receipts": [{"transactionReceipt": {"transactionHash": TX}}]}],
    )
    assert _send(wallet) == TX
    assert wallet.sent_versions() == ["2.0.0", "1.0"]


def test_version_retry_happens_only_once():
    wallet = FakeWallet(wallet_sendCalls=[WalletRpcError(-32000, "Version not supported")])
    with pytest.raises(WalletRpcError):
        _send(wallet)
    assert wallet.sent_versions() == ["2.0.0", "1.0"]


def test_rejection_is_not_retried():
    wallet = FakeWallet(wallet_sendCalls=[WalletRpcError(4001, "User rejected the request.")])
    with pytest.raises(WalletRpcError):
        _send(wallet)
    assert wallet.sent_versions() == ["2.0.0"]


def test_rejection_with_version_code_is_not_retried():
    wallet = FakeWallet(wallet_sendCalls=[WalletRpcError(-32000, "user rejected the request")])
    with pytest.raises(WalletRpcError):
        _send(wallet)
    assert wallet.sent_versions() == ["2.0.0"]


def test_unsupported_method_is_not_retried():
    wallet = FakeWallet(wallet_sendCalls=[WalletRpcError(-32601, "Method not found")])
    with pytest.raises(WalletRpcError):
        _send(wallet)
    assert wallet.sent_versions() == ["2.0.0"]


def test_missing_bundle_id():
    wallet = FakeWallet(wallet_sendCalls=[{"something": 1}])
    with pytest.raises(SponsorshipError):
        _send(wallet)


def test_polls_until_hash_appears():
    wallet = FakeWallet(
        wallet_sendCalls=["b"],
        wallet_getCallsStatus=[{"status": 100}, {"status": "PENDING"}, {"status": 100, "transactionHash": TX}],
    )
    clock = Clock()
    assert _send(wallet, clock) == TX
    assert clock.now == pytest.approx(1.6)


def test_confirmed_without_hash():
    wallet = FakeWallet(wallet_sendCalls=["b"], wallet_getCallsStatus=[{"status": "CONFIRMED", "receipts": []}])
    with pytest.raises(SponsorshipError, match="no transactionHash"):
        _send(wallet)


def test_failed_status_uses_wallet_message():
    wallet = FakeWallet(wallet_sendCalls=["b"],
                        wallet_getCallsStatus=[{"status": 500, "error": {"message": "paymaster refused"}}])
    with pytest.raises(SponsorshipError, match="paymaster refused"):
        _send(wallet)


def test_failed_status_default_message():
    wallet = FakeWallet(wallet_sendCalls=["b"], wallet_getCallsStatus=[{"status": "FAILED"}])
    with pytest.raises(SponsorshipError, match="Sponsored call failed."):
        _send(wallet)


@pytest.mark.parametrize("status", ["0x1f4", "500", "0x190"])
def test_failed_status_as_string_fails_immediately(status):
    clock = Clock()
    wallet = FakeWallet(wallet_sendCalls=["b"], wallet_getCallsStatus=[{"status": status}])
    with pytest.raises(SponsorshipError, match="Sponsored call failed."):
        _send(wallet, clock=clock, timeout=5)
    assert clock.now == 0.0


def test_confirmed_hex_status_without_hash():
    wallet = FakeWallet(wallet_sendCalls=["b"], wallet_getCallsStatus=[{"status": "0xc8"}])
    with pytest.raises(SponsorshipError, match="no transactionHash"):
        _send(wallet)


def test_timeout():
    wallet = FakeWallet(wallet_sendCalls=["b"], wallet_getCallsStatus=[{"status": 100}])
    with pytest.raises(SponsoredCallTimeout):
        _send(wallet, timeout=5)


def test_cancel_stops_polling():
    cancel = threading.Event()
    cancel.set()
    wallet = FakeWallet(wallet_sendCalls=["b"], wallet_getCallsStatus=[{"status": 100}])
    with pytest.raises(CancelledError):
        _send(wallet, cancel_event=cancel)


# ---- requesters

def test_http_requester_result_and_error():
    session = MagicMock()
    session.post.return_value.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x1"}
    request = http_requester("http://wallet.local", session=session)
    assert request("eth_chainId", []) == "0x1"
    body = session.post.call_args.kwargs["json"]
    assert body["method"] == "eth_chainId"

    session.post.return_value.json.return_value = {"error": {"code": 4001, "message": "User rejected"}}
    with pytest.raises(WalletRpcError) as exc:
        request("wallet_sendCalls", [{}])
    assert exc.value.code == 4001
    assert is_user_rejected(exc.value)


def test_http_requester_keeps_rpc_error_on_http_failure():
    session = MagicMock()
    response = session.post.return_value
    response.json.return_value = {"error": {"code": -32000, "message": "version not supported"}}
    response.raise_for_status.side_effect = requests.HTTPError("400 Client Error")
    request = http_requester("http://wallet.local", session=session)

    with pytest.raises(WalletRpcError) as exc:
        request("wallet_sendCalls", [{}])
    assert exc.value.code == -32000
    assert looks_like_version_issue(exc.value)


def test_http_requester_raises_http_error_without_rpc_body():
    session = MagicMock()
    response = session.post.return_value
    response.json.side_effect = ValueError("not json")
    response.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
    request = http_requester("http://wallet.local", session=session)

    with pytest.raises(requests.HTTPError):
        request("eth_chainId", [])


def test_provider_requester():
    w3 = MagicMock()
    w3.provider.make_request.return_value = {"result": {"0x2105": {}}}
    assert provider_requester(w3)("wallet_getCapabilities", [SENDER]) == {"0x2105": {}}

    w3.provider.make_request.return_value = {"error": {"code": -32601, "message": "Method not found"}}
    with pytest.raises(WalletRpcError):
        provider_requester(w3)("wallet_getCapabilities", [SENDER])
