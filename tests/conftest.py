"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from portfolio import Transaction

WALLET = "0x" + "ab" * 20
OTHER = "0x" + "cd" * 20
NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
CUTOFF = NOW - timedelta(days=30)
ONE_ETH = 10 ** 18


def ts(dt: datetime) -> int:
    return int(dt.timestamp())


RECENT_TS = ts(NOW - timedelta(days=1))
OLD_TS = ts(NOW - timedelta(days=90))


def native_tx(timestamp: int, frm: str, to: str, value: int) -> Transaction:
    return Transaction(timestamp, frm, to, value)


def token_tx(timestamp: int, frm: str, to: str, value: int, symbol="USDC", decimals=6) -> Transaction:
    return Transaction(timestamp, frm, to, value, symbol, decimals)


def json_response(payload, status_code: int = 200):
    """Minimal stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def session():
    """A mocked requests.Session."""
    return MagicMock()
