import os
from pathlib import Path

import requests
from dotenv import load_dotenv

from errors import UpstreamError
from portfolio import Transaction, parse_transaction

# Load .env from project root
load_dotenv(Path(__file__).parent.parent / ".env")

API_URL = os.getenv("ETHERSCAN_API_URL", "https://api.etherscan.io/api")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", 15))

# Etherscan answers an empty history with status "0" instead of an empty result
NO_TRANSACTIONS_MESSAGE = "No transactions found"
# Rate limits also come back as HTTP 200, status "0", "Max rate limit reached"
RATE_LIMIT_MARKER = "rate limit"


def _load_api_keys() -> list[str]:
    """Load all ETHERSCAN_API_KEY variants from environment.

    Reads ETHERSCAN_API_KEY, ETHERSCAN_API_KEY_1, ETHERSCAN_API_KEY_2, ... up to _99.
    Returns list of valid (non-empty) keys.
    """
    keys = []
    base = os.getenv("ETHERSCAN_API_KEY", "")
    if base:
        keys.append(base)
    for i in range(1, 100):
        k = os.getenv(f"ETHERSCAN_API_KEY_{i}", "")
        if k:
            keys.append(k)
        elif i > 10:
            # Stop scanning after a gap beyond index 10
            break
    return keys


class EtherscanClient:
    """Transaction source backed by the Etherscan account API."""

    def __init__(
        self,
        api_keys: list[str] | None = None,
        api_url: str = API_URL,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.api_keys = api_keys if api_keys is not None else _load_api_keys()
        self.api_url = api_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._current_key_index = 0

    def _get_current_key(self) -> str:
        if not self.api_keys:
            return ""
        return self.api_keys[self._current_key_index % len(self.api_keys)]

    def _rotate_key(self) -> bool:
        """Switch to the next API key. Returns False if all keys exhausted."""
        if len(self.api_keys) <= 1:
            return False
        old_index = self._current_key_index
        self._current_key_index = (self._current_key_index + 1) % len(self.api_keys)
        # Full circle, all keys exhausted
        if self._current_key_index == 0:
            self._current_key_index = old_index
            return False
        print(f"[Etherscan] API key limit reached, switching to key #{self._current_key_index + 1}/{len(self.api_keys)}")
        return True

    @staticmethod
    def _is_rate_limited(response: requests.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 200:
            return False
        try:
            data = response.json()
        except ValueError:
            return False
        if not isinstance(data, dict) or data.get("status") != "0":
            return False
        return RATE_LIMIT_MARKER in str(data.get("result", "")).lower()

    def _api_request(self, params: dict) -> requests.Response:
        """Make an API request with automatic key rotation when rate limited."""
        while True:
            response = self.session.get(
                self.api_url,
                params={**params, "apikey": self._get_current_key()},
                timeout=self.timeout,
            )
            if self._is_rate_limited(response):
                if self._rotate_key():
                    continue
            return response

    def _fetch(self, action: str, address: str, **extra):
        params = {"module": "account", "action": action, "address": address, **extra}
        try:
            response = self._api_request(params)
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            print(f"[Etherscan] Request error for {action}: {e}")
            raise UpstreamError(f"Etherscan {action} request failed") from e

        if result.get("status") != "1":
            message = result.get("message", "unknown error")
            if message == NO_TRANSACTIONS_MESSAGE:
                return []
            print(f"[Etherscan] API Error for {action}: {message}")
            raise UpstreamError(f"Etherscan {action} failed: {message}")
        return result.get("result")

    def _fetch_list(self, action: str, address: str) -> list:
        items = self._fetch(action, address, startblock="0", endblock="999999999", sort="asc")
        if not isinstance(items, list):
            raise UpstreamError(f"Etherscan {action} returned a non-list result")
        return items

    def fetch_native_transactions(self, address: str) -> list[Transaction]:
        items = self._fetch_list("txlist", address)
        print(f"[Etherscan] {len(items)} native transactions for {address}")
        return [parse_transaction(tx) for tx in items]

    def fetch_token_transactions(self, address: str) -> list[Transaction]:
        items = self._fetch_list("tokentx", address)
        print(f"[Etherscan] {len(items)} token transactions for {address}")
        return [parse_transaction(tx, token=True) for tx in items]

    def fetch_native_balance(self, address: str) -> int:
        balance = self._fetch("balance", address, tag="latest")
        try:
            return int(balance)
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Etherscan balance is not an integer: {balance!r}") from e
