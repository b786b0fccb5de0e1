import json
from types import SimpleNamespace

import pytest
from eth_abi import decode, encode
from web3 import Web3

from multisender import config
from multisender.utils.abi import event_topic, find_entry
from multisender.utils.wallet import LocalWallet

TEST_KEY = "0x" + "11" * 32
APPROVE_SELECTOR = bytes(Web3.keccak(text="approve(address,uint256)")[:4])


def addr(n: int) -> str:
    return Web3.to_checksum_address("0x" + f"{n:040x}")


def make_chain_config(**overrides):
    values = {k: getattr(config.Base, k) for k in dir(config.Base) if k.isupper()}
    values.update(BUILDER_CODES=[], PAYMASTER_URL=None, WALLET_RPC_URL=None, INFURA_GAS_API_URL=None)
    values.update(overrides)
    return SimpleNamespace(**values)


def transfer_log(contract, index, recipient, amount, success=True, return_data=b""):
    entry = find_entry(config.MULTISENDER_ABI, "TransferResult", kind="event")
    return {
        "address": contract,
        "topics": [event_topic(entry), encode(["uint256"], [index]), encode(["address"], [recipient])],
        "data": encode(["uint256", "bool", "bytes"], [amount, success, return_data]),
    }


def summary_log(contract, sender, token, total, ok, failed, unsent, strict=False):
    entry = find_entry(config.MULTISENDER_ABI, "BatchSummary", kind="event")
    return {
        "address": contract,
        "topics": [event_topic(entry), encode(["address"], [sender]), encode(["address"], [token])],
        "data": encode(["uint256", "uint256", "uint256", "uint256", "bool"], [total, ok, failed, unsent, strict]),
    }


class FakeHelper:
    """Stands in for Web3Helper: records sent calls and hands back canned receipts."""

    def __init__(self, cfg, chain_id=8453):
        self.cfg = cfg
        self.chain_id = chain_id
        self.erc20_abi = json.loads(cfg.TOKEN_ABI)

        self.sent = []
        self.send_errors = {}
        self.statuses = {}
        self.receipt_logs = lambda call, n: []
        self._receipts = {}

        self.allowance = 0
        self.registry = (0, 0, 0)
        self.registry_reads = 0

        self.gas = 100_000
        self.price = 10 ** 9
        self.l1 = 5 * 10 ** 12
        self.gas_error = None
        self.l1_error = None

    # tx lifecycle
    def send_call(self, wallet, call, max_fee_per_gas=None, max_priority_fee_per_gas=None):
        n = len(self.sent)
        self.sent.append(call)
        if n in self.send_errors:
            raise self.send_errors[n]
        tx_hash = "0x" + f"{n + 1:064x}"
        status = self.statuses.get(n, 1)
        if status == 1 and call.data[:4] == APPROVE_SELECTOR:
            _, amount = decode(["address", "uint256"], call.data[4:])
            self.allowance = amount
        self._receipts[tx_hash] = {"status": status, "logs": self.receipt_logs(call, n)}
        return tx_hash

    def wait_for_receipt(self, tx_hash, timeout=300, start_delay=2, max_delay=8, cancel_event=None):
        return self._receipts[tx_hash]

    # reads
    def check_allowance(self, token, owner, spender):
        return self.allowance

    def permit2_allowance(self, owner, token, spender):
        self.registry_reads += 1
        return self.registry

    def estimate_gas(self, sender, call):
        if self.gas_error:
            raise self.gas_error
        return self.gas

    def gas_price(self):
        return self.price

    def get_l1_fee(self, data):
        if self.l1_error:
            raise self.l1_error
        return self.l1


@pytest.fixture
def chain_config():
    return make_chain_config()


@pytest.fixture
def helper(chain_config):
    return FakeHelper(chain_config)


@pytest.fixture
def wallet():
    return LocalWallet(TEST_KEY)
