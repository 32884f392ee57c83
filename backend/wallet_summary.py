"""
Wallet summary service: fetches a wallet's history and prices, then runs the
portfolio valuation engine over them.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from coingecko import CoinGeckoClient
from etherscan import EtherscanClient
from portfolio import (
    NATIVE_PRICE_KEY,
    UNKNOWN_SYMBOL,
    EngineSettings,
    PortfolioReport,
    compute_portfolio_report,
    filter_transactions,
    required_price_ids,
    token_key,
    validate_wallet_address,
)
from price_cache import PriceCache

RECENCY_DAYS = int(os.getenv("RECENCY_DAYS", 30))
MAX_WORKERS = 4


class WalletSummaryService:
    def __init__(
        self,
        transactions: EtherscanClient,
        prices: CoinGeckoClient,
        recency_days: int = RECENCY_DAYS,
        settings: EngineSettings | None = None,
    ):
        self.transactions = transactions
        self.prices = prices
        self.recency_days = recency_days
        self.settings = settings or EngineSettings()

    def fetch_historical_prices(
        self,
        symbols: set[str],
        start: datetime,
        end: datetime,
        native_start: datetime | None = None,
    ) -> dict:
        """Price series keyed the way the engine looks them up (lowercase symbol, native id).

        The native series starts at `native_start` when given, token series at `start`.
        """
        wanted = {NATIVE_PRICE_KEY: (NATIVE_PRICE_KEY, native_start or start)}
        for symbol in sorted(symbols):
            if symbol == UNKNOWN_SYMBOL:
                continue
            coin_id = self.prices.resolve_asset_id(symbol)
            if coin_id:
                wanted[symbol] = (coin_id, start)

        with ThreadPoolExecutor(max_workers=MAX_WORKERS) as pool:
            futures = {
                key: pool.submit(self.prices.get_historical_prices, coin_id, series_start, end)
                for key, (coin_id, series_start) in wanted.items()
            }
            return {key: future.result() for key, future in futures.items()}

    def build_summary(self, wallet_address: str, now: datetime | None = None) -> PortfolioReport:
        wallet = validate_wallet_address(wallet_address)
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.recency_days)

        with ThreadPoolExecutor(max_workers=MAX_WORKERS) as pool:
            balance_f = pool.submit(self.transactions.fetch_native_balance, wallet)
            native_f = pool.submit(self.transactions.fetch_native_transactions, wallet)
            tokens_f = pool.submit(self.transactions.fetch_token_transactions, wallet)
            coin_ids_f = pool.submit(self.prices.get_coin_ids)
            native_balance = balance_f.result()
            native_txs = native_f.result()
            token_txs = tokens_f.result()
            coin_ids = coin_ids_f.result()

        _, recent_tokens = filter_transactions(native_txs, token_txs, cutoff)
        recent_symbols = {token_key(tx.token_symbol) for tx in recent_tokens}
        print(
            f"[Summary] {wallet}: {len(native_txs)} native / {len(token_txs)} token txs, "
            f"{len(recent_tokens)} token txs since {cutoff.date()}"
        )

        native_start = None
        if not self.settings.gate_native_flows and native_txs:
            # ungated native flows need a sample at or before the first native transfer
            oldest = datetime.fromtimestamp(min(tx.timestamp for tx in native_txs), timezone.utc)
            native_start = min(oldest - timedelta(days=1), cutoff)

        historical = self.fetch_historical_prices(recent_symbols, cutoff, now, native_start)
        all_symbols = sorted({token_key(tx.token_symbol) for tx in token_txs})
        spot_prices = self.prices.get_spot_prices(required_price_ids(all_symbols, coin_ids))

        return compute_portfolio_report(
            wallet,
            native_txs,
            token_txs,
            native_balance,
            historical,
            spot_prices,
            cutoff,
            coin_ids=coin_ids,
            settings=self.settings,
        )


def create_default_service() -> WalletSummaryService:
    return WalletSummaryService(
        transactions=EtherscanClient(),
        prices=CoinGeckoClient(cache=PriceCache()),
    )


# ── CLI entrypoint ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import json
    import sys
    if len(sys.argv) < 2:
        print("Usage: python wallet_summary.py <wallet_address>")
        sys.exit(1)
    report = create_default_service().build_summary(sys.argv[1])
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
