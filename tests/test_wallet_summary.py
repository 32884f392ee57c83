"""Wallet summary service tests."""

import pytest

from conftest import NOW, OLD_TS, ONE_ETH, OTHER, RECENT_TS, WALLET, native_tx, token_tx
from errors import InvalidInputError, UpstreamError
from portfolio import EngineSettings
from wallet_summary import WalletSummaryService


class FakeTransactions:
    def __init__(self, native=None, tokens=None, balance=0, fail=False):
        self.native = native or []
        self.tokens = tokens or []
        self.balance = balance
        self.fail = fail
        self.calls = []

    def fetch_native_balance(self, address):
        self.calls.append(("balance", address))
        if self.fail:
            raise UpstreamError("explorer down")
        return self.balance

    def fetch_native_transactions(self, address):
        self.calls.append(("native", address))
        return list(self.native)

    def fetch_token_transactions(self, address):
        self.calls.append(("tokens", address))
        return list(self.tokens)


class FakePrices:
    def __init__(self, coin_ids=None, series=None, spot=None):
        self.coin_ids = coin_ids or {}
        self.series = series or {}
        self.spot = spot or {}
        self.historical_requests = []
        self.spot_requests = []

    def get_coin_ids(self):
        return self.coin_ids

    def resolve_asset_id(self, symbol):
        return self.coin_ids.get(symbol.lower())

    def get_historical_prices(self, coin_id, start, end):
        self.historical_requests.append(coin_id)
        return self.series.get(coin_id, [])

    def get_spot_prices(self, coin_ids):
        self.spot_requests.append(list(coin_ids))
        return {k: v for k, v in self.spot.items() if k in coin_ids}


def make_service(transactions, prices):
    return WalletSummaryService(
        transactions,
        prices,
        recency_days=30,
        settings=EngineSettings(native_rounding="truncate", gate_native_flows=True),
    )


def test_build_summary_end_to_end():
    transactions = FakeTransactions(
        native=[native_tx(RECENT_TS, OTHER, WALLET, ONE_ETH)],
        tokens=[
            token_tx(OLD_TS, OTHER, WALLET, 10_000_000, symbol="USDC"),
            token_tx(RECENT_TS, WALLET, OTHER, 4_000_000, symbol="USDC"),
            token_tx(OLD_TS, OTHER, WALLET, 5, symbol="MEME", decimals=0),
        ],
        balance=ONE_ETH,
    )
    prices = FakePrices(
        coin_ids={"usdc": "usd-coin", "eth": "ethereum"},
        series={"ethereum": [[0, 2000.0]], "usd-coin": [[0, 1.0]]},
        spot={"ethereum": 2500.0, "usd-coin": 1.0},
    )

    report = make_service(transactions, prices).build_summary(WALLET, now=NOW)

    assert report.flow_summary.total_in_usd == pytest.approx(2000.0)
    assert report.flow_summary.total_out_usd == pytest.approx(4.0)
    assert report.token_holdings == {"usdc": "6", "meme": "5", "ETH": "1"}
    assert report.total_value_usd == pytest.approx(2506.0)


def test_historical_series_only_for_recent_resolvable_symbols():
    transactions = FakeTransactions(
        tokens=[
            token_tx(OLD_TS, OTHER, WALLET, 1, symbol="DAI", decimals=18),
            token_tx(RECENT_TS, OTHER, WALLET, 1, symbol="USDC"),
            token_tx(RECENT_TS, OTHER, WALLET, 1, symbol="MEME", decimals=0),
        ],
    )
    prices = FakePrices(coin_ids={"usdc": "usd-coin", "dai": "dai"})

    make_service(transactions, prices).build_summary(WALLET, now=NOW)

    assert sorted(prices.historical_requests) == ["ethereum", "usd-coin"]
    assert prices.spot_requests == [["ethereum", "dai", "usd-coin"]]


def test_invalid_address_fails_before_any_fetch():
    transactions = FakeTransactions()

    with pytest.raises(InvalidInputError):
        make_service(transactions, FakePrices()).build_summary("0x1234", now=NOW)
    assert transactions.calls == []


def test_upstream_failure_propagates():
    transactions = FakeTransactions(fail=True)

    with pytest.raises(UpstreamError):
        make_service(transactions, FakePrices()).build_summary(WALLET, now=NOW)


class RangedPrices(FakePrices):
    """Only returns samples inside the requested window, like market_chart/range."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.windows = {}

    def get_historical_prices(self, coin_id, start, end):
        self.windows[coin_id] = (start, end)
        low, high = start.timestamp() * 1000, end.timestamp() * 1000
        return [p for p in super().get_historical_prices(coin_id, start, end) if low <= p[0] <= high]


@pytest.mark.parametrize("gated, expected_out", [(True, 0.0), (False, 1000.0)])
def test_native_flow_gating_reaches_old_prices(gated, expected_out):
    transactions = FakeTransactions(native=[native_tx(OLD_TS, WALLET, OTHER, ONE_ETH)])
    prices = RangedPrices(series={"ethereum": [[(OLD_TS - 3600) * 1000, 1000.0]]})
    service = WalletSummaryService(
        transactions,
        prices,
        recency_days=30,
        settings=EngineSettings(native_rounding="truncate", gate_native_flows=gated),
    )

    report = service.build_summary(WALLET, now=NOW)

    assert report.flow_summary.total_out_usd == pytest.approx(expected_out)
    start, end = prices.windows["ethereum"]
    assert end == NOW
    assert (start.timestamp() < OLD_TS) is not gated
