import os
import urllib.parse
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv

from errors import UpstreamError
from price_cache import PriceCache

# Load .env from project root
load_dotenv(Path(__file__).parent.parent / ".env")

BASE_URL = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3/")
COIN_GECKO_API_KEY = os.getenv("COIN_GECKO_API_KEY", "")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", 15))

# coins/list carries many coins per ticker; pin the ones wallets actually hold
PREFERRED_COIN_IDS = {
    "eth": "ethereum",
    "weth": "weth",
    "usdt": "tether",
    "usdc": "usd-coin",
    "dai": "dai",
    "wbtc": "wrapped-bitcoin",
}


class CoinGeckoClient:
    """Historical and spot USD prices, plus token symbol → CoinGecko id resolution."""

    def __init__(
        self,
        api_key: str = COIN_GECKO_API_KEY,
        base_url: str = BASE_URL,
        cache: Optional[PriceCache] = None,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.cache = cache
        self.session = session or requests.Session()
        self.timeout = timeout
        self._coin_ids: Optional[Dict[str, str]] = None

    def _get(self, path: str, params: Optional[dict] = None) -> requests.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            return self.session.get(
                f"{self.base_url}{path}",
                params=params or {},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            print(f"[CoinGecko] Error fetching {path}: {e}")
            raise UpstreamError(f"CoinGecko request to {path} failed") from e

    def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        response = self._get(path, params)
        try:
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            print(f"[CoinGecko] Error fetching {path}: {e}")
            raise UpstreamError(f"CoinGecko request to {path} failed") from e

    # ── Symbol resolution ─────────────────────────────────────────────────

    def get_coin_ids(self) -> Dict[str, str]:
        """Map lowercase ticker → CoinGecko id."""
        if self._coin_ids is not None:
            return self._coin_ids

        coins = self._get_json("coins/list")
        if not isinstance(coins, list):
            raise UpstreamError("CoinGecko coins/list returned a non-list result")

        coin_ids: Dict[str, str] = {}
        for coin in coins:
            symbol = (coin.get("symbol") or "").lower()
            if symbol and coin.get("id"):
                coin_ids[symbol] = coin["id"]
        coin_ids.update(PREFERRED_COIN_IDS)

        self._coin_ids = coin_ids
        return coin_ids

    def resolve_asset_id(self, symbol: Optional[str]) -> Optional[str]:
        if not symbol:
            return None
        return self.get_coin_ids().get(symbol.lower())

    # ── Prices ────────────────────────────────────────────────────────────

    def get_historical_prices(self, coin_id: str, start: datetime, end: datetime) -> list:
        """[[timestamp_ms, usd_price], ...] between `start` and `end`, oldest first."""
        cache_key = f"{coin_id}HistoricalData:{start:%Y-%m-%d}:{end:%Y-%m-%d}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                print(f"[CoinGecko] Using cached data for {coin_id}")
                return cached

        response = self._get(
            f"coins/{urllib.parse.quote(coin_id, safe='')}/market_chart/range",
            {
                "vs_currency": "usd",
                "from": str(int(start.timestamp())),
                "to": str(int(end.timestamp())),
            },
        )
        if response.status_code == 404:
            print(f"[CoinGecko] No historical data for {coin_id}")
            return []
        try:
            response.raise_for_status()
            prices = response.json().get("prices") or []
        except (requests.RequestException, ValueError, AttributeError) as e:
            print(f"[CoinGecko] Error fetching historical data for {coin_id}: {e}")
            raise UpstreamError(f"CoinGecko historical data for {coin_id} failed") from e

        prices.sort(key=lambda p: p[0])
        if self.cache is not None:
            self.cache.set(cache_key, prices)
        print(f"[CoinGecko] Fetched {len(prices)} price points for {coin_id}")
        return prices

    def get_spot_prices(self, coin_ids: list[str], currency: str = "usd") -> Dict[str, float]:
        if not coin_ids:
            return {}

        data = self._get_json(
            "simple/price",
            {"ids": ",".join(coin_ids), "vs_currencies": currency},
        )
        if not isinstance(data, dict):
            raise UpstreamError("CoinGecko simple/price returned a non-object result")

        prices: Dict[str, float] = {}
        for coin_id, quote in data.items():
            price = (quote or {}).get(currency)
            if price is not None:
                prices[coin_id] = float(price)
        return prices
