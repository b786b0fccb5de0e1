import re
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_typed_data

_PRIV_RE = re.compile(r"^(?:0x)?([0-9a-fA-F]{64})$")


def parse_private_key(blob: str) -> Optional[str]:
    """
    First private key found in a blob: hex with/without 0x, 64 hex chars.
    '#' comments and blank lines are ignored. Returns '0x' + lowercase or None.
    """
    for raw in (blob or "").splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        for tok in re.split(r"[\s,;]+", line):
            m = _PRIV_RE.match(tok.strip())
            if m:
                return "0x" + m.group(1).lower()
    return None


class LocalWallet:
    """
    Signer backed by a local private key.

    Exposes the two wallet capabilities the flow needs: EIP-712 typed-data signing
    (permits) and raw transaction signing. Gas-sponsored submission goes through a
    wallet RPC requester instead, see utils.sponsored.
    """

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(self, full_message: dict) -> bytes:
        signable = encode_typed_data(full_message=full_message)
        return bytes(self._account.sign_message(signable).signature)

    def sign_transaction(self, tx: dict) -> bytes:
        return bytes(self._account.sign_transaction(tx).raw_transaction)

    def __repr__(self) -> str:
        return f"LocalWallet({self.address})"
