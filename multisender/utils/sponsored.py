"""
Gas-sponsored execution through a wallet's batched-calls API (EIP-5792).

A requester is any callable ``request(method, params) -> result`` that speaks
EIP-1193 to the wallet. ``http_requester`` talks JSON-RPC to a wallet endpoint,
``provider_requester`` reuses a Web3 provider.
"""
import itertools
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from .errors import CancelledError, SponsoredCallTimeout, SponsorshipError, WalletRpcError, USER_REJECTION_HINTS

logger = logging.getLogger(__name__)

Requester = Callable[[str, list], Any]

SEND_CALLS_VERSION = "2.0.0"
LEGACY_SEND_CALLS_VERSION = "1.0"
VERSION_MISMATCH_CODE = -32000
USER_REJECTED_CODE = 4001


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _message(obj: Any) -> str:
    msg = _get(obj, "message") or _get(obj, "shortMessage")
    if msg is None and isinstance(obj, BaseException):
        msg = str(obj)
    return str(msg or "").lower()


def supports_paymaster_service(request: Requester, address: str, chain_id: int) -> bool:
    try:
        caps = request("wallet_getCapabilities", [address])
    except Exception as e:
        # wallets without EIP-5792 answer with method-not-found
        logger.debug("wallet_getCapabilities failed: %s", e)
        return False
    if not isinstance(caps, dict):
        return False
    entry = caps.get(hex(int(chain_id)))
    if entry is None:
        entry = caps.get(str(int(chain_id)))
    service = _get(entry, "paymasterService") if entry else None
    return bool(_get(service, "supported")) if service else False


def is_user_rejected(err: Any) -> bool:
    """True when ``err`` or anything it wraps is a wallet-side rejection."""
    seen = set()
    stack = [err]
    while stack:
        e = stack.pop()
        if e is None or id(e) in seen:
            continue
        seen.add(id(e))

        if _get(e, "code") == USER_REJECTED_CODE:
            return True
        msg = _message(e)
        if any(h in msg for h in USER_REJECTION_HINTS):
            return True

        for key in ("cause", "data", "details", "originalError"):
            nested = _get(e, key)
            if nested is not None and not isinstance(nested, (str, bytes, int)):
                stack.append(nested)
        if isinstance(e, BaseException) and e.__cause__ is not None:
            stack.append(e.__cause__)
    return False


def looks_like_unsupported_send_calls(err: Any) -> bool:
    msg = _message(err)
    return (
        ("wallet_sendcalls" in msg and "not supported" in msg)
        or "method not found" in msg
        or "unsupported method" in msg
    )


def looks_like_version_issue(err: Any) -> bool:
    if _get(err, "code") == VERSION_MISMATCH_CODE:
        return True
    return "version not supported" in _message(err)


def wallet_send_calls(request: Requester, address: str, chain_id: int, paymaster_url: str,
                      calls: Sequence[Dict[str, Any]], version: str = SEND_CALLS_VERSION) -> str:
    """Submit ``calls`` as one atomic bundle. Returns the wallet's bundle id."""
    payload = {
        "version": version,
        "id": f"calls-{uuid.uuid4()}",
        "from": address,
        "chainId": hex(int(chain_id)),
        "atomicRequired": True,
        "calls": [
            {"to": c["to"], "data": c["data"], "value": c.get("value") or "0x0"}
            for c in calls
        ],
        "capabilities": {"paymasterService": {"url": paymaster_url}},
    }
    result = request("wallet_sendCalls", [payload])

    if isinstance(result, str):
        bundle_id = result
    elif isinstance(result, dict):
        bundle_id = result.get("id") or result.get("batchId") or result.get("callsId")
    else:
        bundle_id = None
    if not isinstance(bundle_id, str) or not bundle_id:
        raise SponsorshipError("wallet_sendCalls returned an unexpected result shape (missing batch id).")
    return bundle_id


def _status_hash(status: dict) -> Optional[str]:
    receipts = status.get("receipts") or []
    first = receipts[0] if receipts else None
    if isinstance(first, dict):
        h = first.get("transactionHash")
        if not h and isinstance(first.get("transactionReceipt"), dict):
            h = first["transactionReceipt"].get("transactionHash")
        if h:
            return h
    return status.get("transactionHash")


def _status_code(raw: Any) -> Optional[int]:
    """Numeric status from an int, a decimal string or a 0x-prefixed hex string."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        s = raw.strip()
        try:
            return int(s, 16) if s.lower().startswith("0x") else int(s)
        except ValueError:
            return None
    return None


def send_sponsored_calls(request: Requester, address: str, chain_id: int, paymaster_url: str,
                         calls: Sequence[Dict[str, Any]], poll_interval: float = 0.8, timeout: float = 60,
                         cancel_event=None, sleep: Callable[[float], None] = time.sleep,
                         clock: Callable[[], float] = time.monotonic) -> str:
    """
    Send ``calls`` through the wallet with paymaster sponsorship and poll until the
    wallet reports a transaction hash.

    Rejections and unsupported-method errors are re-raised as-is; a version mismatch
    gets exactly one retry with the legacy version string.
    """
    try:
        bundle_id = wallet_send_calls(request, address, chain_id, paymaster_url, calls, SEND_CALLS_VERSION)
    except Exception as e:
        if is_user_rejected(e) or looks_like_unsupported_send_calls(e):
            raise
        if not looks_like_version_issue(e):
            raise
        logger.info("wallet_sendCalls %s rejected (%s); retrying with %s",
                    SEND_CALLS_VERSION, e, LEGACY_SEND_CALLS_VERSION)
        bundle_id = wallet_send_calls(request, address, chain_id, paymaster_url, calls, LEGACY_SEND_CALLS_VERSION)

    started = clock()
    while clock() - started < timeout:
        if cancel_event is not None and cancel_event.is_set():
            raise CancelledError(f"Stopped polling sponsored bundle {bundle_id}; it may still be executed.")

        status = request("wallet_getCallsStatus", [bundle_id]) or {}
        raw = status.get("status")
        code = _status_code(raw)
        legacy = str(raw or "").upper()

        tx_hash = _status_hash(status)
        if tx_hash:
            return tx_hash
        if (code is not None and 200 <= code < 300) or legacy == "CONFIRMED":
            raise SponsorshipError("Sponsored call confirmed, but no transactionHash was returned.")
        if (code is not None and code >= 400) or legacy == "FAILED":
            error = status.get("error") or {}
            reason = error.get("message") if isinstance(error, dict) else None
            raise SponsorshipError(str(reason) if reason else "Sponsored call failed.")
        sleep(poll_interval)

    raise SponsoredCallTimeout("Timed out waiting for sponsored transaction confirmation.")


def http_requester(url: str, timeout: float = 30, session: Optional[requests.Session] = None) -> Requester:
    """JSON-RPC requester against a wallet endpoint (e.g. a local signer bridge)."""
    http = session or requests.Session()
    ids = itertools.count(1)

    def request(method: str, params: Optional[List[Any]] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(ids), "method": method, "params": params or []}
        resp = http.post(url, json=body, timeout=timeout)
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            if isinstance(error, dict):
                raise WalletRpcError(error.get("code"), str(error.get("message", "")), error.get("data"))
            raise WalletRpcError(None, str(error))
        resp.raise_for_status()
        if not isinstance(payload, dict):
            raise WalletRpcError(None, f"Invalid JSON-RPC response from {url}")
        return payload.get("result")

    return request


def provider_requester(w3) -> Requester:
    def request(method: str, params: Optional[List[Any]] = None) -> Any:
        payload = w3.provider.make_request(method, params or [])
        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            if isinstance(error, dict):
                raise WalletRpcError(error.get("code"), str(error.get("message", "")), error.get("data"))
            raise WalletRpcError(None, str(error))
        return payload.get("result")

    return request
