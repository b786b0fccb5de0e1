"""
Calldata and event helpers driven by the JSON ABIs in config.py.

Encoding goes straight through eth_abi so a batch call can be built, fee-estimated
and handed to a wallet without a live node.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Union

from eth_abi import decode, encode
from web3 import Web3


@dataclass(frozen=True)
class ContractCall:
    to: str
    data: bytes
    value: int = 0

    def as_wallet_call(self) -> Dict[str, str]:
        # EIP-5792 call entry; value is always present, 0x0 when no ETH moves
        return {"to": self.to, "data": "0x" + self.data.hex(), "value": hex(int(self.value))}


def load_abi(abi: Union[str, List[dict]]) -> List[dict]:
    return json.loads(abi) if isinstance(abi, str) else list(abi)


def canonical_type(param: dict) -> str:
    t = param["type"]
    if t.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){t[len('tuple'):]}"
    return t


def find_entry(abi: Union[str, List[dict]], name: str, kind: str = "function") -> dict:
    for entry in load_abi(abi):
        if entry.get("type") == kind and entry.get("name") == name:
            return entry
    raise KeyError(f"{kind} '{name}' not found in ABI")


def signature(entry: dict) -> str:
    types = ",".join(canonical_type(i) for i in entry.get("inputs", []))
    return f"{entry['name']}({types})"


def selector(entry: dict) -> bytes:
    return bytes(Web3.keccak(text=signature(entry))[:4])


def event_topic(entry: dict) -> bytes:
    return bytes(Web3.keccak(text=signature(entry)))


def as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes(Web3.to_bytes(hexstr=value))
    raise TypeError(f"cannot convert {type(value).__name__} to bytes")


def encode_call(abi: Union[str, List[dict]], name: str, args: Sequence[Any]) -> bytes:
    entry = find_entry(abi, name)
    types = [canonical_type(i) for i in entry.get("inputs", [])]
    return selector(entry) + encode(types, list(args))


def decode_log(entry: dict, topics: Sequence[Any], data: Any) -> Dict[str, Any]:
    """Decode one log against an event ABI entry. topics[0] must already match."""
    inputs = entry.get("inputs", [])
    indexed = [i for i in inputs if i.get("indexed")]
    plain = [i for i in inputs if not i.get("indexed")]

    values: Dict[str, Any] = {}
    for param, topic in zip(indexed, list(topics)[1:]):
        values[param["name"]] = decode([canonical_type(param)], as_bytes(topic))[0]

    decoded = decode([canonical_type(p) for p in plain], as_bytes(data))
    for param, value in zip(plain, decoded):
        values[param["name"]] = value

    for param in inputs:
        if param["type"] == "address" and param["name"] in values:
            values[param["name"]] = Web3.to_checksum_address(values[param["name"]])
    return values
