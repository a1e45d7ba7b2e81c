import os
from datetime import datetime, timezone

import pytest

from range_sync.cache_manager import CacheManager
from range_sync.config import RangeSource
from range_sync.exceptions import NoRangesRetrieved
from range_sync.models import AddressRange
from range_sync.range_aggregator import aggregate_ranges, fetch_source

from .helpers import fake_source_client

SOURCES = [
    RangeSource(name="feed-a", url="https://feeds.example.com/a.json"),
    RangeSource(name="feed-b", url="https://feeds.example.com/b.json"),
]


class TestAggregateRanges:
    def test_union_of_two_sources(self):
        client = fake_source_client(
            {
                SOURCES[0].url: ["185.46.212.0/22"],
                SOURCES[1].url: ["185.46.212.0/22", "2a03:f80::/29"],
            }
        )
        snapshot = aggregate_ranges(SOURCES, client)

        assert snapshot.ipv4 == {AddressRange("185.46.212.0/22")}
        assert snapshot.ipv6 == {AddressRange("2a03:f80::/29")}
        assert snapshot.total_count == 2

    def test_one_failing_source_does_not_stop_the_others(self, caplog):
        client = fake_source_client({SOURCES[1].url: ["10.0.0.0/8"]}, failing={SOURCES[0].url})
        snapshot = aggregate_ranges(SOURCES, client)

        assert {r.value for r in snapshot.all_ranges} == {"10.0.0.0/8"}
        assert "feed-a" in caplog.text

    def test_all_sources_failing_raises(self):
        client = fake_source_client({}, failing={s.url for s in SOURCES})
        with pytest.raises(NoRangesRetrieved):
            aggregate_ranges(SOURCES, client)

    def test_sources_returning_nothing_raise(self):
        client = fake_source_client({SOURCES[0].url: {"status": "ok"}, SOURCES[1].url: []})
        with pytest.raises(NoRangesRetrieved):
            aggregate_ranges(SOURCES, client)

    def test_invalid_json_is_source_failure(self):
        client = fake_source_client({SOURCES[1].url: ["192.0.2.0/24"]})
        original = client.get_json.side_effect

        def _get_json(url, params=None):
            if url == SOURCES[0].url:
                raise ValueError("Expecting value: line 1 column 1")
            return original(url, params)

        client.get_json.side_effect = _get_json
        snapshot = aggregate_ranges(SOURCES, client)
        assert snapshot.total_count == 1

    def test_parallel_fetch_matches_sequential(self):
        documents = {
            SOURCES[0].url: ["185.46.212.0/22", "104.129.204.0/23"],
            SOURCES[1].url: {"prefixes": ["2a03:f80::/29", "185.46.212.0/22"]},
        }
        sequential = aggregate_ranges(SOURCES, fake_source_client(documents), workers=1)
        parallel = aggregate_ranges(SOURCES, fake_source_client(documents), workers=4)
        assert sequential.all_ranges == parallel.all_ranges

    def test_snapshot_is_timestamped(self):
        ts = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        client = fake_source_client({SOURCES[0].url: ["1.2.3.0/24"], SOURCES[1].url: []})
        assert aggregate_ranges(SOURCES, client, fetched_at=ts).fetched_at == ts


class TestSourceCache:
    def test_fetched_document_is_cached_and_replayed(self, tmp_path):
        source = SOURCES[0]
        client = fake_source_client({source.url: ["198.51.100.0/24"]})
        fetch_source(client, source, CacheManager(tmp_path, use_cache=False))

        replay_client = fake_source_client({}, failing={source.url})
        ranges = fetch_source(replay_client, source, CacheManager(tmp_path, use_cache=True))

        assert {r.value for r in ranges} == {"198.51.100.0/24"}
        replay_client.get_json.assert_not_called()

    def test_list_cache_files_newest_first(self, tmp_path):
        cache = CacheManager(tmp_path, use_cache=False)
        cache.set("feed-old", ["10.0.0.0/8"])
        cache.set("feed-new", ["192.0.2.0/24"])
        os.utime(tmp_path / "feed-old.json", (1_700_000_000, 1_700_000_000))
        os.utime(tmp_path / "feed-new.json", (1_800_000_000, 1_800_000_000))

        listed = cache.list_cache_files()

        assert [c["key"] for c in listed] == ["feed-new", "feed-old"]
        assert listed[0]["file"] == "feed-new.json"
        assert listed[0]["modified"] == datetime.fromtimestamp(1_800_000_000).strftime("%Y-%m-%d %H:%M:%S")
        assert listed[0]["size_kb"] >= 0
