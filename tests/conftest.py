"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import Mock

import pytest

from range_sync.config import PolicyStoreSettings, RangeSource, RetrySettings, Settings


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        policy_store=PolicyStoreSettings(
            url="https://console.example.com",
            api_token="test-token",
            scope="site",
            scope_id="site-1",
        ),
        sources=[
            RangeSource(name="feed-a", url="https://feeds.example.com/a.json"),
            RangeSource(name="feed-b", url="https://feeds.example.com/b.json"),
        ],
        data_dir=tmp_path,
        state_file=tmp_path / "sync_state.json",
        cache_dir=tmp_path / "cache",
        retry=RetrySettings(max_attempts=2, base_delay=0),
    )


@pytest.fixture
def no_sleep() -> Mock:
    return Mock(name="sleep")
