"""Tests for the session build metadata cache"""

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from site_components.build_cache import BuildMetadataCache
from site_components.build_output import (
    NITRO_ASSETS_PATH,
    PLACEHOLDER_METADATA,
    BuildMetadata,
    BuildOutputMissing,
    PlaceholderMetadataSource,
    ScannedMetadataSource,
)


class CountingSource:
    """Returns a fresh BuildMetadata per load and counts the calls."""

    always_recompute = False

    def __init__(self, delay: float = 0.0):
        self.calls = 0
        self.delay = delay
        self._lock = threading.Lock()

    def load(self, output_root, assets_path):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        return BuildMetadata(assets_path=assets_path, static_routes=("index.html",))


class TestGet:
    def test_reuses_value(self):
        source = CountingSource()
        cache = BuildMetadataCache(source)
        first = cache.get("Web", "/build", NITRO_ASSETS_PATH)
        second = cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert first is second
        assert source.calls == 1

    def test_keys_are_independent(self):
        source = CountingSource()
        cache = BuildMetadataCache(source)
        cache.get("Web", "/build", NITRO_ASSETS_PATH)
        cache.get("Docs", "/docs", NITRO_ASSETS_PATH)
        assert source.calls == 2

    def test_writes_serialized_form(self):
        store: dict[str, str] = {}
        cache = BuildMetadataCache(CountingSource(), store)
        cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert json.loads(store["Web"]) == {
            "assetsPath": NITRO_ASSETS_PATH,
            "staticRoutes": ["index.html"],
        }

    def test_reads_stored_value(self):
        store = {"Web": json.dumps({"assetsPath": "dist", "staticRoutes": ["a"]})}
        source = CountingSource()
        cache = BuildMetadataCache(source, store)
        metadata = cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert metadata == BuildMetadata(assets_path="dist", static_routes=("a",))
        assert cache.get("Web", "/build", NITRO_ASSETS_PATH) is metadata
        assert source.calls == 0

    @pytest.mark.parametrize(
        "raw",
        ["{not json", "[]", '"text"', json.dumps({"assetsPath": "dist"})],
    )
    def test_corrupted_entry_is_a_miss(self, raw):
        store = {"Web": raw}
        source = CountingSource()
        cache = BuildMetadataCache(source, store)
        metadata = cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert metadata.static_routes == ("index.html",)
        assert source.calls == 1
        assert json.loads(store["Web"])["staticRoutes"] == ["index.html"]

    def test_source_errors_propagate(self, tmp_path):
        cache = BuildMetadataCache(ScannedMetadataSource())
        with pytest.raises(BuildOutputMissing):
            cache.get("Web", tmp_path, NITRO_ASSETS_PATH)
        assert "Web" not in cache.store


class UnavailableStore(dict):
    def get(self, key, default=None):
        raise OSError("store unavailable")

    def __setitem__(self, key, value):
        raise OSError("store unavailable")

    def pop(self, key, default=None):
        raise OSError("store unavailable")


class TestStoreFailures:
    def test_get_returns_scanned_value(self):
        source = CountingSource()
        cache = BuildMetadataCache(source, UnavailableStore())
        metadata = cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert metadata.static_routes == ("index.html",)
        assert cache.get("Web", "/build", NITRO_ASSETS_PATH) is metadata
        assert source.calls == 1

    def test_invalidate_still_forgets(self):
        source = CountingSource()
        cache = BuildMetadataCache(source, UnavailableStore())
        cache.get("Web", "/build", NITRO_ASSETS_PATH)
        cache.invalidate("Web")
        cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert source.calls == 2


class TestInvalidate:
    def test_recomputes_after_invalidate(self):
        source = CountingSource()
        store: dict[str, str] = {}
        cache = BuildMetadataCache(source, store)
        first = cache.get("Web", "/build", NITRO_ASSETS_PATH)
        cache.invalidate("Web")
        assert "Web" not in store
        second = cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert first is not second
        assert source.calls == 2

    def test_unknown_key(self):
        BuildMetadataCache(CountingSource()).invalidate("missing")


class TestDevelopmentMode:
    def test_always_placeholder(self, tmp_path):
        (tmp_path / NITRO_ASSETS_PATH).mkdir(parents=True)
        (tmp_path / NITRO_ASSETS_PATH / "index.html").write_text("x")
        cache = BuildMetadataCache(PlaceholderMetadataSource())
        assert cache.get("Web", tmp_path, NITRO_ASSETS_PATH) == PLACEHOLDER_METADATA
        assert cache.get("Web", tmp_path / "gone", NITRO_ASSETS_PATH) == PLACEHOLDER_METADATA

    def test_ignores_stored_scan(self):
        store = {"Web": json.dumps({"assetsPath": "dist", "staticRoutes": ["a"]})}
        cache = BuildMetadataCache(PlaceholderMetadataSource(), store)
        assert cache.get("Web", "/build", NITRO_ASSETS_PATH) == PLACEHOLDER_METADATA

    def test_recomputes_every_time(self):
        source = CountingSource()
        source.always_recompute = True
        cache = BuildMetadataCache(source)
        cache.get("Web", "/build", NITRO_ASSETS_PATH)
        cache.get("Web", "/build", NITRO_ASSETS_PATH)
        assert source.calls == 2


class TestSingleFlight:
    def test_concurrent_gets_load_once(self):
        source = CountingSource(delay=0.05)
        cache = BuildMetadataCache(source)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(
                    lambda _: cache.get("Web", "/build", NITRO_ASSETS_PATH), range(16)
                )
            )
        assert source.calls == 1
        assert all(result is results[0] for result in results)

    def test_each_key_loads_once(self):
        source = CountingSource(delay=0.05)
        cache = BuildMetadataCache(source)
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(
                pool.map(
                    lambda key: cache.get(key, "/build", NITRO_ASSETS_PATH),
                    ["a", "b", "c", "d"],
                )
            )
        assert source.calls == 4
