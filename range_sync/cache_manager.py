"""Cache manager for storing and replaying raw range-source documents locally."""
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


class CacheManager:
    """Manages local caching of source responses as JSON files."""

    def __init__(self, cache_dir: Path, use_cache: bool = False):
        """
        Initialize cache manager.

        Args:
            cache_dir: Directory to store cache files
            use_cache: If True, try to use cached data; if False, always fetch fresh data
                      Note: Data is ALWAYS cached when fetched, regardless of this flag
        """
        self.cache_dir = Path(cache_dir)
        self.use_cache = use_cache
        self.logger = logging.getLogger(__name__)

        self.cache_dir.mkdir(parents=True, exist_ok=True)

        if use_cache:
            self.logger.info("Cache mode: READ source documents from cache when available")
        else:
            self.logger.info("Cache mode: ALWAYS fetch fresh data (but will cache it)")
        self.logger.info("Cache directory: %s", cache_dir)

    def _get_cache_file(self, cache_key: str) -> Path:
        safe_key = re.sub(r"[^A-Za-z0-9._-]+", "_", cache_key)
        return self.cache_dir / f"{safe_key}.json"

    def get(self, cache_key: str) -> Optional[Any]:
        """
        Retrieve a cached document.

        Returns:
            Cached data if available and use_cache is True, None otherwise
        """
        if not self.use_cache:
            self.logger.debug("Cache disabled, skipping read for: %s", cache_key)
            return None

        cache_file = self._get_cache_file(cache_key)
        if not cache_file.exists():
            self.logger.info("Cache miss: %s (file not found)", cache_key)
            return None

        try:
            with open(cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.error("Error reading cache file %s: %s", cache_key, exc)
            return None

        mtime = datetime.fromtimestamp(cache_file.stat().st_mtime)
        self.logger.info("Cache hit: %s (cached on %s)", cache_key, mtime.strftime("%Y-%m-%d %H:%M:%S"))
        return data

    def set(self, cache_key: str, data: Any) -> None:
        """Store a document in the cache. This ALWAYS happens regardless of use_cache."""
        cache_file = self._get_cache_file(cache_key)
        try:
            with open(cache_file, "w", encoding="utf-8") as f:
                json.dump(data, f)
        except (OSError, TypeError, ValueError) as exc:
            self.logger.error("Error writing cache file %s: %s", cache_key, exc)
            return

        size_kb = round(cache_file.stat().st_size / 1024, 2)
        self.logger.info("Cached: %s (%s KB)", cache_key, size_kb)

    def list_cache_files(self) -> list[dict]:
        """Describe each cached source document (key, file, size_kb, modified), newest first."""
        entries = []
        for cache_file in self.cache_dir.glob("*.json"):
            stat = cache_file.stat()
            entries.append((stat.st_mtime, cache_file, stat.st_size))
        entries.sort(key=lambda e: e[0], reverse=True)
        return [
            {
                "key": path.stem,
                "file": path.name,
                "size_kb": round(size / 1024, 2),
                "modified": datetime.fromtimestamp(mtime).strftime("%Y-%m-%d %H:%M:%S"),
            }
            for mtime, path, size in entries
        ]
