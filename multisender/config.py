# config.py
import os
from dotenv import load_dotenv
from pathlib import Path
from web3 import Web3

load_dotenv()

BASE_PATH = Path(__file__).resolve().parent / "resources"
MODULE_PATH = Path(__file__).resolve().parent / "modules"

DEFAULT_MULTISENDER_ADDRESS = "0xAd7d4483Eb4352B71aCc8C3C81482079b0636d55"
DEFAULT_PERMIT2_ADDRESS = "0x000000000022D473030F116dDEE9F6B43aC78BA3"
GAS_PRICE_ORACLE_ADDRESS = "0x420000000000000000000000000000000000000F"  # OP Stack predeploy


def _env_address(name: str, default: str) -> str:
    # A typo in .env must never point the tool at the wrong contract.
    value = (os.getenv(name) or "").strip()
    if value.startswith("0x") and Web3.is_address(value):
        return Web3.to_checksum_address(value)
    return Web3.to_checksum_address(default)


def _env_codes() -> list:
    many = (os.getenv("BUILDER_CODES") or "").strip()
    one = (os.getenv("BUILDER_CODE") or "").strip()
    raw = many or one
    return [c.strip() for c in raw.split(",") if c.strip()]


MULTISENDER_ADDRESS = _env_address("MULTISENDER_ADDRESS", DEFAULT_MULTISENDER_ADDRESS)
PERMIT2_ADDRESS = _env_address("PERMIT2_ADDRESS", DEFAULT_PERMIT2_ADDRESS)
BUILDER_CODES = _env_codes()

ALCHEMY_API_KEY = os.getenv('ALCHEMY_API_KEY')
INFURA_API_KEY = os.getenv('INFURA_API_KEY')
PAYMASTER_URL = os.getenv('PAYMASTER_URL')
WALLET_RPC_URL = os.getenv('WALLET_RPC_URL')

MAX_RECIPIENTS_PER_TX = 500

# Permit windows (seconds)
PERMIT_EXPIRATION_SECONDS = 60 * 60 * 24 * 30
PERMIT_SIG_DEADLINE_SECONDS = 60 * 20

# wallet_sendCalls status polling
SPONSORED_POLL_INTERVAL = 0.8
SPONSORED_TIMEOUT = 60

MULTISENDER_ABI = '''[
  {
    "type": "function",
    "name": "sendETH",
    "stateMutability": "payable",
    "inputs": [
      {"name": "recipients", "type": "address[]"},
      {"name": "amounts", "type": "uint256[]"}
    ],
    "outputs": []
  },
  {
    "type": "function",
    "name": "sendETHBestEffort",
    "stateMutability": "payable",
    "inputs": [
      {"name": "recipients", "type": "address[]"},
      {"name": "amounts", "type": "uint256[]"}
    ],
    "outputs": []
  },
  {
    "type": "function",
    "name": "sendERC20Permit2",
    "stateMutability": "nonpayable",
    "inputs": [
      {
        "name": "permitSingle",
        "type": "tuple",
        "components": [
          {
            "name": "details",
            "type": "tuple",
            "components": [
              {"name": "token", "type": "address"},
              {"name": "amount", "type": "uint160"},
              {"name": "expiration", "type": "uint48"},
              {"name": "nonce", "type": "uint48"}
            ]
          },
          {"name": "spender", "type": "address"},
          {"name": "sigDeadline", "type": "uint256"}
        ]
      },
      {"name": "signature", "type": "bytes"},
      {"name": "recipients", "type": "address[]"},
      {"name": "amounts", "type": "uint256[]"}
    ],
    "outputs": []
  },
  {
    "type": "function",
    "name": "sendERC20Permit2BestEffort",
    "stateMutability": "nonpayable",
    "inputs": [
      {
        "name": "permitSingle",
        "type": "tuple",
        "components": [
          {
            "name": "details",
            "type": "tuple",
            "components": [
              {"name": "token", "type": "address"},
              {"name": "amount", "type": "uint160"},
              {"name": "expiration", "type": "uint48"},
              {"name": "nonce", "type": "uint48"}
            ]
          },
          {"name": "spender", "type": "address"},
          {"name": "sigDeadline", "type": "uint256"}
        ]
      },
      {"name": "signature", "type": "bytes"},
      {"name": "recipients", "type": "address[]"},
      {"name": "amounts", "type": "uint256[]"}
    ],
    "outputs": []
  },
  {
    "type": "event",
    "name": "TransferResult",
    "inputs": [
      {"indexed": true, "name": "index", "type": "uint256"},
      {"indexed": true, "name": "recipient", "type": "address"},
      {"indexed": false, "name": "amount", "type": "uint256"},
      {"indexed": false, "name": "success", "type": "bool"},
      {"indexed": false, "name": "returnData", "type": "bytes"}
    ],
    "anonymous": false
  },
  {
    "type": "event",
    "name": "BatchSummary",
    "inputs": [
      {"indexed": true, "name": "sender", "type": "address"},
      {"indexed": true, "name": "token", "type": "address"},
      {"indexed": false, "name": "totalRequested", "type": "uint256"},
      {"indexed": false, "name": "successCount", "type": "uint256"},
      {"indexed": false, "name": "failCount", "type": "uint256"},
      {"indexed": false, "name": "unsentAmount", "type": "uint256"},
      {"indexed": false, "name": "strict", "type": "bool"}
    ],
    "anonymous": false
  }
]'''

TOKEN_ABI = '''[
  {
    "type":"function",
    "name":"symbol",
    "stateMutability":"view",
    "inputs":[],
    "outputs":[{"name":"","type":"string"}]
  },
  {
    "type": "function",
    "name": "decimals",
    "stateMutability": "view",
    "inputs": [],
    "outputs": [{"name": "", "type": "uint8"}]
  },
  {
    "type": "function",
    "name": "approve",
    "stateMutability": "nonpayable",
    "inputs": [
      {"name": "spender", "type": "address"},
      {"name": "amount", "type": "uint256"}
    ],
    "outputs": [{"name": "", "type": "bool"}]
  },
  {
    "type": "function",
    "name": "allowance",
    "stateMutability": "view",
    "inputs": [
      {"name": "owner", "type": "address"},
      {"name": "spender", "type": "address"}
    ],
    "outputs": [{"name": "remaining", "type": "uint256"}]
  }
]'''

PERMIT2_ABI = '''[
  {
    "type": "function",
    "name": "allowance",
    "stateMutability": "view",
    "inputs": [
      {"name": "owner", "type": "address"},
      {"name": "token", "type": "address"},
      {"name": "spender", "type": "address"}
    ],
    "outputs": [
      {"name": "amount", "type": "uint160"},
      {"name": "expiration", "type": "uint48"},
      {"name": "nonce", "type": "uint48"}
    ]
  }
]'''

GAS_PRICE_ORACLE_ABI = '''[
  {
    "type": "function",
    "name": "getL1Fee",
    "stateMutability": "view",
    "inputs": [{"name": "_data", "type": "bytes"}],
    "outputs": [{"name": "", "type": "uint256"}]
  }
]'''


class Base :
    # RPC URL for connecting to Base mainnet
    ALCHEMY_API_KEY = ALCHEMY_API_KEY
    ALCHEMY_RPC_URL = f"https://base-mainnet.g.alchemy.com/v2/{ALCHEMY_API_KEY}" if ALCHEMY_API_KEY else None
    RPC_URLS = ["https://mainnet.base.org"]

    CHAIN_ID = 8453
    CHAIN_NAME = "base"
    IS_OP_STACK = True
    EXPLORER_TX = "https://basescan.org/tx/"

    # Paths to your wallet and recipient files
    WALLET_FILE = os.path.join(BASE_PATH, "wallet.txt")  # private key
    RECIPIENTS_FILE = os.path.join(BASE_PATH, "recipients.txt")

    MULTISENDER_ADDRESS = MULTISENDER_ADDRESS
    PERMIT2_ADDRESS = PERMIT2_ADDRESS
    GAS_PRICE_ORACLE_ADDRESS = GAS_PRICE_ORACLE_ADDRESS
    MULTISENDER_ABI = MULTISENDER_ABI
    TOKEN_ABI = TOKEN_ABI
    PERMIT2_ABI = PERMIT2_ABI
    GAS_PRICE_ORACLE_ABI = GAS_PRICE_ORACLE_ABI

    # Gas sponsorship (EIP-5792 wallet_sendCalls)
    PAYMASTER_URL = PAYMASTER_URL
    WALLET_RPC_URL = WALLET_RPC_URL
    BUILDER_CODES = BUILDER_CODES

    # Infura Gas API Key for gas price estimation
    INFURA_API_KEY = INFURA_API_KEY
    INFURA_GAS_API_URL = f"https://gas.api.infura.io/v3/{INFURA_API_KEY}/networks/{CHAIN_ID}/suggestedGasFees" if INFURA_API_KEY else None


class BaseSepolia :
    ALCHEMY_API_KEY = ALCHEMY_API_KEY
    ALCHEMY_RPC_URL = f"https://base-sepolia.g.alchemy.com/v2/{ALCHEMY_API_KEY}" if ALCHEMY_API_KEY else None
    RPC_URLS = ["https://sepolia.base.org"]

    CHAIN_ID = 84532
    CHAIN_NAME = "base-sepolia"
    IS_OP_STACK = True
    EXPLORER_TX = "https://sepolia.basescan.org/tx/"

    WALLET_FILE = os.path.join(BASE_PATH, "wallet.txt")
    RECIPIENTS_FILE = os.path.join(BASE_PATH, "recipients.txt")

    MULTISENDER_ADDRESS = MULTISENDER_ADDRESS
    PERMIT2_ADDRESS = PERMIT2_ADDRESS
    GAS_PRICE_ORACLE_ADDRESS = GAS_PRICE_ORACLE_ADDRESS
    MULTISENDER_ABI = MULTISENDER_ABI
    TOKEN_ABI = TOKEN_ABI
    PERMIT2_ABI = PERMIT2_ABI
    GAS_PRICE_ORACLE_ABI = GAS_PRICE_ORACLE_ABI

    PAYMASTER_URL = PAYMASTER_URL
    WALLET_RPC_URL = WALLET_RPC_URL
    BUILDER_CODES = BUILDER_CODES

    INFURA_API_KEY = INFURA_API_KEY
    INFURA_GAS_API_URL = None


CHAINS = {
    "Base": Base,
    "Base Sepolia": BaseSepolia,
}
