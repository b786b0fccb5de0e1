import os
import json
import time
import logging
import threading
from typing import List, Optional, Tuple

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound

from .rpc_provider import RotatingHTTPProvider
from .abi import ContractCall
from .errors import CancelledError, ConfirmationError, SubmissionError, error_message

logger = logging.getLogger(__name__)


class Web3Helper:
    """
    Consolidated Web3 utilities for RPC rotation, gas, tx lifecycle
    and the contract reads the multisend flow depends on
    (token metadata/allowance, Permit2 registry, L1 fee oracle).

    This class owns a rotating provider and a Web3 instance unless one is injected.
    """

    def __init__(self, chain_config, console=None, w3: Optional[Web3] = None):
        self.console = console
        self.cfg = chain_config
        self.chain_id = int(chain_config.CHAIN_ID)

        if w3 is None:
            self.rpc_urls: List[str] = self._build_rpc_urls(chain_config)
            self.provider = RotatingHTTPProvider(self.rpc_urls)
            w3 = Web3(self.provider)
        else:
            self.rpc_urls = []
            self.provider = getattr(w3, "provider", None)
        self.w3 = w3

        self.erc20_abi = json.loads(self.cfg.TOKEN_ABI)
        self.permit2_abi = json.loads(self.cfg.PERMIT2_ABI)
        self.multisender_abi = json.loads(self.cfg.MULTISENDER_ABI)
        self.gas_oracle_abi = json.loads(self.cfg.GAS_PRICE_ORACLE_ABI)

    # ---------- RPC ----------
    def _build_rpc_urls(self, chain_config) -> List[str]:
        urls: List[str] = []
        base = getattr(chain_config, 'ALCHEMY_RPC_URL', None)
        if base:
            urls.append(str(base))

        keys_raw = os.getenv('ALCHEMY_API_KEYS', '')
        keys = [k.strip() for k in keys_raw.split(',') if k.strip()]
        if keys and base and '/v2/' in base:
            prefix = base.split('/v2/')[0] + '/v2/'
            urls.extend([prefix + k for k in keys])

        extras_raw = os.getenv('EXTRA_RPC_URLS', '')
        urls.extend([u.strip() for u in extras_raw.split(',') if u.strip()])
        urls.extend(getattr(chain_config, 'RPC_URLS', []) or [])

        dedup = list(dict.fromkeys(urls))
        if not dedup:
            raise RuntimeError('No RPC URLs configured. Set ALCHEMY_API_KEY or EXTRA_RPC_URLS in .env')
        return dedup

    def _log(self, msg: str) -> None:
        if self.console:
            self.console.log(msg)
        else:
            logger.info(msg)

    # ---------- Contracts ----------
    def _erc20(self, token_address: str):
        return self.w3.eth.contract(address=self.w3.to_checksum_address(token_address), abi=self.erc20_abi)

    def _permit2(self):
        return self.w3.eth.contract(address=self.w3.to_checksum_address(self.cfg.PERMIT2_ADDRESS), abi=self.permit2_abi)

    def _gas_oracle(self):
        return self.w3.eth.contract(
            address=self.w3.to_checksum_address(self.cfg.GAS_PRICE_ORACLE_ADDRESS), abi=self.gas_oracle_abi)

    # ---------- Reads ----------
    def read_token_meta(self, token_address: str) -> Tuple[int, str]:
        c = self._erc20(token_address)
        decimals = int(c.functions.decimals().call())
        try:
            symbol = str(c.functions.symbol().call())
        except Exception as e:
            # symbol() is display-only; some tokens return bytes32 or revert
            logger.debug("symbol() failed for %s: %s", token_address, e)
            symbol = ""
        return decimals, symbol

    def check_allowance(self, token_address: str, owner_address: str, spender_address: str) -> int:
        c = self._erc20(token_address)
        return int(c.functions.allowance(
            self.w3.to_checksum_address(owner_address),
            self.w3.to_checksum_address(spender_address)
        ).call())

    def permit2_allowance(self, owner_address: str, token_address: str, spender_address: str) -> Tuple[int, int, int]:
        amount, expiration, nonce = self._permit2().functions.allowance(
            self.w3.to_checksum_address(owner_address),
            self.w3.to_checksum_address(token_address),
            self.w3.to_checksum_address(spender_address),
        ).call()
        return int(amount), int(expiration), int(nonce)

    def get_l1_fee(self, data: bytes) -> int:
        return int(self._gas_oracle().functions.getL1Fee(bytes(data)).call())

    def estimate_gas(self, sender: str, call: ContractCall) -> int:
        return int(self.w3.eth.estimate_gas({
            'from': self.w3.to_checksum_address(sender),
            'to': self.w3.to_checksum_address(call.to),
            'data': Web3.to_hex(call.data),
            'value': int(call.value),
        }))

    def gas_price(self) -> int:
        return int(self.w3.eth.gas_price)

    # ---------- Gas ----------
    def fetch_suggested_fees(self, api_url: Optional[str], tier: str = 'medium') -> Tuple[Optional[int], Optional[int]]:
        try:
            if not api_url:
                raise ValueError("No gas API URL provided")

            response = requests.get(api_url, timeout=10)
            response.raise_for_status()
            gas_data = response.json()

            if tier not in gas_data:
                raise KeyError(f"Gas tier '{tier}' not found in response")
            if 'suggestedMaxFeePerGas' not in gas_data[tier] or 'suggestedMaxPriorityFeePerGas' not in gas_data[tier]:
                raise KeyError("Missing required gas fee fields in response")

            max_fee_per_gas = float(gas_data[tier]['suggestedMaxFeePerGas'])
            max_priority_fee_per_gas = float(gas_data[tier]['suggestedMaxPriorityFeePerGas'])

            self._log(f"[bold yellow]Fetched gas fees - Max Fee Per Gas:[/bold yellow] {max_fee_per_gas} Gwei, "
                      f"[bold yellow]Max Priority Fee Per Gas:[/bold yellow] {max_priority_fee_per_gas} Gwei")
            return Web3.to_wei(max_fee_per_gas, 'gwei'), Web3.to_wei(max_priority_fee_per_gas, 'gwei')

        except requests.exceptions.HTTPError as http_err:
            logger.warning("HTTP error occurred while fetching gas fees: %s", http_err)
        except requests.exceptions.Timeout:
            logger.warning("Timeout while fetching gas fees from API")
        except (KeyError, ValueError) as err:
            logger.info("Gas fee API unavailable: %s", err)
        except requests.exceptions.RequestException as err:
            logger.warning("An error occurred while fetching gas fees: %s", err)

        try:
            base_fee = self.w3.eth.get_block('latest')['baseFeePerGas']
            tip = self.w3.eth.max_priority_fee
            return int(base_fee * 2 + tip), int(tip)
        except Exception as err:
            logger.warning("EIP-1559 fee lookup failed, using gas_price: %s", err)
            gp = self.gas_price()
            return gp, None

    # ---------- Tx lifecycle ----------
    def send_call(self, wallet, call: ContractCall, max_fee_per_gas: Optional[int] = None,
                  max_priority_fee_per_gas: Optional[int] = None) -> str:
        """Sign ``call`` with the local wallet and broadcast it. Returns the tx hash (0x hex)."""
        try:
            return self._send_call(wallet, call, max_fee_per_gas, max_priority_fee_per_gas)
        except Exception as e:
            raise SubmissionError(error_message(e)) from e

    def _send_call(self, wallet, call: ContractCall, max_fee_per_gas: Optional[int],
                   max_priority_fee_per_gas: Optional[int]) -> str:
        sender = wallet.address
        if max_fee_per_gas is None:
            max_fee_per_gas, suggested_prio = self.fetch_suggested_fees(getattr(self.cfg, 'INFURA_GAS_API_URL', None))
            if max_priority_fee_per_gas is None:
                max_priority_fee_per_gas = suggested_prio

        tx = {
            'from': sender,
            'to': self.w3.to_checksum_address(call.to),
            'data': Web3.to_hex(call.data),
            'value': int(call.value),
            'chainId': self.chain_id,
            'nonce': self.w3.eth.get_transaction_count(sender, 'pending'),
        }
        if max_priority_fee_per_gas is None:
            tx['gasPrice'] = int(max_fee_per_gas)
        else:
            tx['type'] = 2
            tx['maxFeePerGas'] = int(max_fee_per_gas)
            tx['maxPriorityFeePerGas'] = int(max_priority_fee_per_gas)
        gas = self.w3.eth.estimate_gas({k: v for k, v in tx.items() if k in ('from', 'to', 'data', 'value')})
        tx['gas'] = int(gas * 12 // 10)

        raw = wallet.sign_transaction(tx)
        return Web3.to_hex(self.w3.eth.send_raw_transaction(raw))

    def wait_for_receipt(self, tx_hash: str, timeout: int = 300, start_delay: float = 2, max_delay: float = 8,
                         cancel_event: Optional[threading.Event] = None):
        start = time.time()
        delay = start_delay
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise CancelledError(f"Stopped waiting for {tx_hash}; the transaction may still confirm.")
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
                if receipt:
                    return receipt
            except TransactionNotFound:
                pass
            if time.time() - start > timeout:
                raise ConfirmationError(f"Timed out waiting for transaction receipt {tx_hash}")
            time.sleep(delay)
            delay = min(max_delay, delay * 1.5)

    def explorer_url(self, tx_hash: str) -> str:
        return f"{getattr(self.cfg, 'EXPLORER_TX', '')}{tx_hash}"


class FileHelper:
    """
    Basic file helpers to ensure placeholders and load simple lists.
    """

    TEMPLATES = {
        'wallet': "# Enter the sender private key here. Supports 0x-prefixed or raw hex.\n",
        'recipients': "# One recipient per line: address,amount (or address amount). Example:\n# 0x1111111111111111111111111111111111111111,0.01\n",
    }

    @staticmethod
    def ensure_placeholder(file_path: str, kind: str) -> None:
        if not os.path.exists(file_path):
            os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                f.write(FileHelper.TEMPLATES.get(kind, ''))

    @staticmethod
    def _strip_comment(line: str) -> str:
        s = line.strip()
        if not s or s.startswith('#'):
            return ''
        if '#' in s:
            s = s.split('#', 1)[0].strip()
        return s

    @staticmethod
    def load_lines(file_path: str) -> List[str]:
        out: List[str] = []
        if not os.path.exists(file_path):
            return out
        with open(file_path, 'r', encoding='utf-8-sig') as f:
            for line in f:
                s = FileHelper._strip_comment(line)
                if s:
                    out.append(s)
        return out

    @staticmethod
    def read_text(file_path: str) -> str:
        with open(file_path, 'r', encoding='utf-8-sig', newline='') as f:
            return f.read()
