"""
Recipient list parsing.

One entry per line, ``address,amount`` or ``address<whitespace>amount``. The first
bad line stops the parse and is handed back verbatim so the caller can point at it.
CSV uploads are flattened into the same text by ``csv_to_text`` and go through the
same parser; there is no second validation path.
"""
import csv
import io
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Iterable, List, Optional

from web3 import Web3

from .errors import ListParseError, ValidationError

ETH_DECIMALS = 18

_AMOUNT_RE = re.compile(r"^\d+(?:\.\d+)?$")
_WS_RE = re.compile(r"\s+")


class AssetMode(Enum):
    ETH = "ETH"
    ERC20 = "ERC20"


@dataclass(frozen=True)
class RecipientEntry:
    address: str
    amount: int


@dataclass
class ParseResult:
    recipients: List[str] = field(default_factory=list)
    amounts: List[Optional[int]] = field(default_factory=list)
    raw_amounts: List[str] = field(default_factory=list)
    total: int = 0
    invalid_line: Optional[str] = None
    decimals_ready: bool = True

    @property
    def ok(self) -> bool:
        return self.invalid_line is None

    @property
    def entries(self) -> List[RecipientEntry]:
        if not self.decimals_ready:
            raise ValidationError("Token decimals are not known yet; amounts are not converted.")
        return [RecipientEntry(a, int(v)) for a, v in zip(self.recipients, self.amounts)]


@dataclass(frozen=True)
class ParsedBatchRequest:
    mode: AssetMode
    result: ParseResult
    token: Optional[str] = None
    decimals: Optional[int] = None
    symbol: Optional[str] = None

    @property
    def unit_decimals(self) -> Optional[int]:
        return ETH_DECIMALS if self.mode is AssetMode.ETH else self.decimals

    @property
    def unit_symbol(self) -> str:
        if self.mode is AssetMode.ETH:
            return "ETH"
        return self.symbol or "TOKEN"

    @property
    def ready(self) -> bool:
        if not self.result.ok or not self.result.recipients:
            return False
        if self.mode is AssetMode.ERC20:
            return bool(self.token) and self.decimals is not None and self.result.decimals_ready
        return True


def split_lines(raw: str) -> List[str]:
    return raw.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def is_valid_address(value: str) -> bool:
    # eth_utils accepts unprefixed hex; a list entry must carry the 0x prefix.
    return value.startswith("0x") and Web3.is_address(value)


def looks_like_amount(value: str) -> bool:
    return bool(_AMOUNT_RE.match(value))


def is_nonzero_decimal(value: str) -> bool:
    return any(ch in "123456789" for ch in value)


def to_base_units(amount: str, decimals: int) -> int:
    """Decimal string -> integer base units. Extra fraction digits round half-up."""
    if not looks_like_amount(amount):
        raise ValueError(f"invalid amount: {amount!r}")
    if decimals < 0 or decimals > 255:
        raise ValueError(f"invalid decimals: {decimals}")
    with localcontext() as ctx:
        ctx.prec = len(amount) + decimals + 10
        scaled = Decimal(amount).scaleb(decimals)
        return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_units(value: int, decimals: int) -> str:
    """Integer base units -> plain decimal string with trailing zeros trimmed."""
    sign = "-" if value < 0 else ""
    digits = str(abs(int(value)))
    if decimals == 0:
        return sign + digits
    digits = digits.rjust(decimals + 1, "0")
    whole, frac = digits[:-decimals], digits[-decimals:].rstrip("0")
    return f"{sign}{whole}.{frac}" if frac else f"{sign}{whole}"


def _split_fields(line: str) -> List[str]:
    if "," in line:
        return line.split(",", 1)
    # "addr 1 000" has three fields and must not parse as "addr 1"
    return _WS_RE.split(line)


def parse_recipients(raw: str, mode: AssetMode = AssetMode.ETH, decimals: Optional[int] = None) -> ParseResult:
    decimals_ready = mode is AssetMode.ETH or decimals is not None
    unit = ETH_DECIMALS if mode is AssetMode.ETH else decimals
    result = ParseResult(decimals_ready=decimals_ready)

    for line in split_lines(raw):
        trimmed = line.strip()
        if not trimmed:
            continue

        parts = _split_fields(trimmed)
        addr_raw = (parts[0] if parts else "").strip()
        amt_raw = (parts[1] if len(parts) > 1 else "").strip()

        if len(parts) > 2 or not is_valid_address(addr_raw) or not amt_raw:
            result.invalid_line = trimmed
            return result
        if not looks_like_amount(amt_raw) or not is_nonzero_decimal(amt_raw):
            result.invalid_line = trimmed
            return result

        amount: Optional[int] = None
        if decimals_ready:
            try:
                amount = to_base_units(amt_raw, unit)
            except ValueError:
                result.invalid_line = trimmed
                return result
            if amount <= 0:
                result.invalid_line = trimmed
                return result

        result.recipients.append(Web3.to_checksum_address(addr_raw))
        result.raw_amounts.append(amt_raw)
        result.amounts.append(amount)
        if amount is not None:
            result.total += amount

    return result


def build_request(raw: str, mode: AssetMode, token: Optional[str] = None,
                  decimals: Optional[int] = None, symbol: Optional[str] = None) -> ParsedBatchRequest:
    """Rebuild the whole request from raw text. Nothing from a previous parse is reused."""
    token_cs = Web3.to_checksum_address(token) if token and is_valid_address(token) else None
    if mode is AssetMode.ETH:
        token_cs, decimals, symbol = None, None, None
    elif token_cs is None:
        decimals = None
    result = parse_recipients(raw, mode, decimals)
    return ParsedBatchRequest(mode=mode, result=result, token=token_cs, decimals=decimals, symbol=symbol)


def serialize_entries(entries: Iterable[RecipientEntry], decimals: int = ETH_DECIMALS) -> str:
    return "\n".join(f"{e.address},{format_units(e.amount, decimals)}" for e in entries)


def csv_to_text(text: str) -> str:
    """
    Flatten an uploaded CSV into ``address,amount`` lines.

    - empty rows are skipped
    - the first row is a header when it mentions both "address" and "amount"
    - a single "address amount" column is split on whitespace
    """
    try:
        rows = [[(c or "").strip() for c in row] for row in csv.reader(io.StringIO(text))]
    except csv.Error as e:
        raise ListParseError(f"CSV parse error: {e}") from e

    rows = [r for r in rows if any(r)]
    if not rows:
        return ""

    probe = ",".join(rows[0]).lower()
    if "address" in probe and "amount" in probe:
        rows = rows[1:]

    out: List[str] = []
    for row in rows:
        while row and not row[-1]:
            row = row[:-1]
        c0 = row[0] if row else ""
        c1 = row[1] if len(row) > 1 else ""
        if not c0:
            continue
        if not c1 and _WS_RE.search(c0):
            parts = _WS_RE.split(c0, maxsplit=1)
            out.append(f"{parts[0].strip()},{parts[1].strip()}")
            continue
        # extra columns pass through so the parser rejects the row
        out.append(",".join(row))
    return "\n".join(out)
