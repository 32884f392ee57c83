"""
Portfolio valuation engine: replays a wallet's native and token transfers
into balances, prices recent transfers at their historical USD value and
values the final holdings at spot prices.

Pure and synchronous: every input (transactions, price series, spot prices)
is resolved by the caller before the engine runs.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, localcontext

from eth_utils import is_address

from errors import InvalidInputError

# ── Constants ─────────────────────────────────────────────────────────────

NATIVE_DECIMALS = 18
NATIVE_PRICE_KEY = "ethereum"  # CoinGecko id, also the key of the native price series
NATIVE_HOLDING_KEY = "ETH"
UNKNOWN_SYMBOL = "unknown"

ROUNDING_TRUNCATE = "truncate"
ROUNDING_EXACT = "exact"
ROUNDING_POLICIES = (ROUNDING_TRUNCATE, ROUNDING_EXACT)

NATIVE_FLOW_ROUNDING = os.getenv("NATIVE_FLOW_ROUNDING", ROUNDING_TRUNCATE).lower()
GATE_NATIVE_FLOWS = os.getenv("GATE_NATIVE_FLOWS", "true").lower() in ("true", "1", "yes")


# ── Data classes ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Transaction:
    timestamp: int  # unix seconds
    from_address: str
    to_address: str
    value: int  # base units
    token_symbol: str | None = None  # None = native coin
    token_decimals: int | None = None


@dataclass
class FlowTotals:
    total_in_usd: float = 0.0
    total_out_usd: float = 0.0


@dataclass
class BalanceState:
    balances: dict[str, int] = field(default_factory=dict)
    decimals: dict[str, int] = field(default_factory=dict)
    native_balance: int = 0
    flows: FlowTotals = field(default_factory=FlowTotals)


@dataclass(frozen=True)
class EngineSettings:
    native_rounding: str = NATIVE_FLOW_ROUNDING
    gate_native_flows: bool = GATE_NATIVE_FLOWS

    def __post_init__(self):
        if self.native_rounding not in ROUNDING_POLICIES:
            raise ValueError(
                f"Unknown native rounding policy {self.native_rounding!r}, "
                f"expected one of {ROUNDING_POLICIES}"
            )


@dataclass(frozen=True)
class PortfolioReport:
    total_value_usd: float
    token_holdings: dict[str, str]
    flow_summary: FlowTotals

    def to_dict(self) -> dict:
        return {
            "totalValueUSD": str(self.total_value_usd),
            "tokenHoldings": dict(self.token_holdings),
            "summaryLastMonth": {
                "totalInUsd": self.flow_summary.total_in_usd,
                "totalOutUsd": self.flow_summary.total_out_usd,
            },
        }


# ── Input validation ──────────────────────────────────────────────────────

def validate_wallet_address(address) -> str:
    if not isinstance(address, str) or not address.strip():
        raise InvalidInputError("Wallet address is required")
    address = address.strip()
    if not is_address(address):
        raise InvalidInputError(f"Invalid Ethereum address: {address}")
    return address


def _required_int(raw: dict, key: str) -> int:
    value = raw.get(key)
    if value is None or value == "":
        raise InvalidInputError(f"Transaction is missing '{key}'")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Transaction field '{key}' is not an integer: {value!r}")


def parse_transaction(raw: dict, token: bool = False) -> Transaction:
    """Build a Transaction from an explorer record (Etherscan field names)."""
    if not isinstance(raw, dict):
        raise InvalidInputError(f"Transaction record must be an object, got {type(raw).__name__}")

    from_addr = raw.get("from")
    to_addr = raw.get("to")
    if from_addr is None or to_addr is None:
        raise InvalidInputError("Transaction is missing 'from' or 'to'")

    timestamp = _required_int(raw, "timeStamp")
    value = _required_int(raw, "value")

    if not token:
        return Transaction(timestamp, from_addr, to_addr, value)

    symbol = raw.get("tokenSymbol") or None
    decimals = _required_int(raw, "tokenDecimal")
    return Transaction(timestamp, from_addr, to_addr, value, symbol, decimals)


# ── Core helpers ──────────────────────────────────────────────────────────

def find_price_before(prices, timestamp_ms: int) -> float | None:
    """Price of the latest sample at or before `timestamp_ms`.

    `prices` is sorted ascending by timestamp, each item `[timestamp_ms, price]`.
    Returns None when the series is empty or every sample is later.
    """
    if not prices:
        return None

    low, high = 0, len(prices) - 1
    best = None
    while low <= high:
        mid = (low + high) // 2
        if prices[mid][0] <= timestamp_ms:
            best = prices[mid][1]
            low = mid + 1
        else:
            high = mid - 1
    return best


def filter_transactions(
    native_txs: list[Transaction],
    token_txs: list[Transaction],
    cutoff: datetime,
) -> tuple[list[Transaction], list[Transaction]]:
    """Keep only transactions strictly after `cutoff`, preserving order."""
    threshold = cutoff.timestamp()
    recent_native = [tx for tx in native_txs if tx.timestamp > threshold]
    recent_tokens = [tx for tx in token_txs if tx.timestamp > threshold]
    return recent_native, recent_tokens


def token_key(symbol: str | None) -> str:
    return symbol.lower() if symbol else UNKNOWN_SYMBOL


def to_units(amount: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = max(len(str(abs(amount))), 1) + 2
        return (Decimal(amount).scaleb(-decimals)).normalize()


def format_units(amount: int, decimals: int) -> str:
    return format(to_units(amount, decimals), "f")


def native_flow_units(value: int, rounding: str) -> float:
    if rounding == ROUNDING_TRUNCATE:
        return float(value // 10 ** NATIVE_DECIMALS)
    return value / 10 ** NATIVE_DECIMALS


def transfer_direction(tx: Transaction, wallet: str) -> int:
    """+1 incoming, -1 outgoing, 0 for transfers not involving the wallet.

    The sender check wins, so a self-transfer counts as outgoing.
    """
    if (tx.from_address or "").lower() == wallet:
        return -1
    if (tx.to_address or "").lower() == wallet:
        return 1
    return 0


def add_flow(flows: FlowTotals, direction: int, usd: float):
    if direction > 0:
        flows.total_in_usd += usd
    elif direction < 0:
        flows.total_out_usd += usd


# ── Replay ────────────────────────────────────────────────────────────────

def process_native_transfer(
    state: BalanceState,
    tx: Transaction,
    wallet: str,
    historical: dict,
    threshold: float,
    settings: EngineSettings,
):
    direction = transfer_direction(tx, wallet)
    if direction == 0:
        return

    state.native_balance += direction * tx.value

    if settings.gate_native_flows and tx.timestamp <= threshold:
        return
    price = find_price_before(historical.get(NATIVE_PRICE_KEY), tx.timestamp * 1000) or 0
    add_flow(state.flows, direction, native_flow_units(tx.value, settings.native_rounding) * price)


def process_token_transfer(
    state: BalanceState,
    tx: Transaction,
    wallet: str,
    historical: dict,
    threshold: float,
):
    symbol = token_key(tx.token_symbol)
    if symbol not in state.balances:
        state.balances[symbol] = 0
        state.decimals[symbol] = tx.token_decimals if tx.token_decimals is not None else 0

    direction = transfer_direction(tx, wallet)
    if direction == 0:
        return

    state.balances[symbol] += direction * tx.value

    if tx.timestamp <= threshold:
        return
    decimals = tx.token_decimals if tx.token_decimals is not None else state.decimals[symbol]
    price = find_price_before(historical.get(symbol), tx.timestamp * 1000) or 0
    add_flow(state.flows, direction, tx.value / 10 ** decimals * price)


def reconstruct_balances(
    native_txs: list[Transaction],
    token_txs: list[Transaction],
    wallet_address: str,
    historical_prices: dict,
    recency_cutoff: datetime,
    settings: EngineSettings | None = None,
) -> BalanceState:
    """Replay the full transfer history of `wallet_address`.

    Balances come from every transfer; USD flows only from transfers after
    `recency_cutoff` (native transfers obey `settings.gate_native_flows`).
    """
    settings = settings or EngineSettings()
    wallet = wallet_address.lower()
    threshold = recency_cutoff.timestamp()
    historical_prices = historical_prices or {}

    state = BalanceState()
    for tx in native_txs:
        process_native_transfer(state, tx, wallet, historical_prices, threshold, settings)
    for tx in token_txs:
        process_token_transfer(state, tx, wallet, historical_prices, threshold)
    return state


# ── Valuation ─────────────────────────────────────────────────────────────

def required_price_ids(symbols, coin_ids: dict[str, str]) -> list[str]:
    """Spot-price ids needed to value `symbols`: native coin first, then mapped symbols."""
    ids = [NATIVE_PRICE_KEY]
    for symbol in symbols:
        if symbol == UNKNOWN_SYMBOL:
            continue
        coin_id = coin_ids.get(symbol.lower())
        if coin_id and coin_id not in ids:
            ids.append(coin_id)
    return ids


def value_portfolio(
    balances: dict[str, int],
    decimals: dict[str, int],
    coin_ids: dict[str, str],
    native_balance: int,
    spot_prices: dict[str, float],
) -> tuple[float, dict[str, str]]:
    total_value_usd = 0.0
    holdings: dict[str, str] = {}

    for symbol, amount in balances.items():
        symbol_decimals = decimals.get(symbol, 0)
        holdings[symbol] = format_units(amount, symbol_decimals)
        # the placeholder bucket is never priced, whatever coins/list says
        coin_id = coin_ids.get(symbol.lower()) if symbol != UNKNOWN_SYMBOL else None
        if not coin_id:
            continue
        price = spot_prices.get(coin_id) or 0
        total_value_usd += float(to_units(amount, symbol_decimals)) * price

    native_price = spot_prices.get(NATIVE_PRICE_KEY) or 0
    total_value_usd += float(to_units(native_balance, NATIVE_DECIMALS)) * native_price
    holdings[NATIVE_HOLDING_KEY] = format_units(native_balance, NATIVE_DECIMALS)

    return total_value_usd, holdings


# ── Main pipeline ────────────────────────────────────────────────────────

def compute_portfolio_report(
    wallet_address: str,
    native_txs: list[Transaction],
    token_txs: list[Transaction],
    native_balance: int | None,
    historical_prices: dict,
    spot_prices: dict[str, float],
    recency_cutoff: datetime,
    coin_ids: dict[str, str] | None = None,
    settings: EngineSettings | None = None,
) -> PortfolioReport:
    wallet = validate_wallet_address(wallet_address)
    coin_ids = coin_ids or {}

    state = reconstruct_balances(
        native_txs, token_txs, wallet, historical_prices, recency_cutoff, settings
    )
    if native_balance is None:
        native_balance = state.native_balance

    total_value_usd, holdings = value_portfolio(
        state.balances, state.decimals, coin_ids, native_balance, spot_prices or {}
    )
    return PortfolioReport(
        total_value_usd=total_value_usd,
        token_holdings=holdings,
        flow_summary=state.flows,
    )
