"""
File-backed cache for CoinGecko responses.

Entries live in a single JSON file as {key: {"ts": <unix seconds>, "value": ...}}
and expire after `ttl_seconds`.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Optional

# Path relative to project root
PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CACHE_FILE = Path(os.getenv("PRICE_CACHE_FILE", PROJECT_ROOT / "data" / "coingecko_cache.json"))
DEFAULT_TTL_SECONDS = int(os.getenv("PRICE_CACHE_TTL_SECONDS", 3600))


class PriceCache:
    """JSON file cache with per-entry TTL, safe to share between threads."""

    def __init__(self, path: Path = DEFAULT_CACHE_FILE, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.path = Path(path)
        self.ttl = ttl_seconds
        self._lock = threading.Lock()
        self._entries: dict[str, dict] = self._load()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"[PriceCache] Ignoring unreadable cache file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._entries, f, ensure_ascii=False)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._entries.get(key)
            if not item:
                return None
            if (time.time() - item.get("ts", 0)) > self.ttl:
                self._entries.pop(key, None)
                return None
            return item.get("value")

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = {"ts": time.time(), "value": value}
            self._save()

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
            if self.path.exists():
                self.path.unlink()
