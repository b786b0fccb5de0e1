from typing import Any, Optional


class MultisenderError(Exception):
    """Base class for every error raised by the multisender flow."""


class ValidationError(MultisenderError):
    """The request cannot be executed as given (bad list, missing token data)."""


class ListParseError(ValidationError):
    """The CSV pre-pass could not read the uploaded rows."""


class AuthorizationError(MultisenderError):
    """Token approval failed. ``original`` is the first failure, which is usually the useful one."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class SubmissionError(MultisenderError):
    pass


class ConfirmationError(MultisenderError):
    pass


class SponsorshipError(MultisenderError):
    pass


class SponsoredCallTimeout(SponsorshipError):
    pass


class CancelledError(MultisenderError):
    pass


class WalletRpcError(MultisenderError):
    """JSON-RPC error returned by a wallet endpoint (EIP-1193 shaped)."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


USER_REJECTION_HINTS = ("user rejected", "user denied", "rejected the request")
INSUFFICIENT_FUNDS_HINTS = ("insufficient funds", "exceeds balance", "insufficient balance")
WRONG_NETWORK_HINTS = ("chain id", "chainid", "wrong network", "does not match the target chain")
GAS_ERROR_HINTS = (
    "base fee", "underpriced", "fee cap", "max fee", "intrinsic gas too low",
    "replacement transaction underpriced", "max priority", "fee too low",
)
NONCE_HINTS = ("nonce too low", "nonce too high", "already known")


def error_message(exc: BaseException) -> str:
    # web3 errors frequently wrap a JSON-RPC dict as the first arg
    if exc.args and isinstance(exc.args[0], dict):
        msg = exc.args[0].get("message")
        if msg:
            return str(msg)
    msg = getattr(exc, "message", None)
    if isinstance(msg, str) and msg:
        return msg
    return str(exc) or exc.__class__.__name__


def humanize_error(exc: BaseException) -> str:
    """Short, user-facing message for a submission/confirmation failure."""
    from .sponsored import is_user_rejected

    if is_user_rejected(exc):
        return "Request rejected in wallet."
    raw = error_message(exc)
    low = raw.lower()
    if any(h in low for h in INSUFFICIENT_FUNDS_HINTS):
        return "Insufficient funds for amount plus gas."
    if any(h in low for h in WRONG_NETWORK_HINTS):
        return "Wrong network. Switch the wallet to the configured chain."
    if any(h in low for h in GAS_ERROR_HINTS):
        return f"Gas fee rejected by the node: {raw}"
    if any(h in low for h in NONCE_HINTS):
        return f"Account nonce conflict, another transaction may be pending: {raw}"
    return raw
