"""Tests for storage persistence, the repeating task and the lifecycle hook."""

import asyncio
import json

import pytest

from appcache.cache import CacheManager
from appcache.lifecycle import CachePersistence
from appcache.storage import PersistentStorage, SessionStorage, StorageCache
from appcache.tasks import RepeatingTask


class TestStorageAreas:
    def test_session_storage(self):
        storage = SessionStorage()
        assert storage.get_item("k") is None
        storage.set_item("k", "v")
        assert storage.get_item("k") == "v"
        storage.remove_item("k")
        storage.remove_item("k")
        assert storage.get_item("k") is None

    def test_persistent_storage(self, tmp_path):
        storage = PersistentStorage(tmp_path / "cache")
        assert storage.get_item("k") is None
        storage.set_item("k", '{"a": 1}')
        assert (tmp_path / "cache" / "k.json").read_text() == '{"a": 1}'
        assert not (tmp_path / "cache" / "k.json.tmp").exists()

        reopened = PersistentStorage(tmp_path / "cache")
        assert reopened.get_item("k") == '{"a": 1}'
        reopened.remove_item("k")
        reopened.remove_item("k")
        assert reopened.get_item("k") is None

    @pytest.mark.parametrize("key", ["../escape", "nested/slot", "..", "", "dir\\slot"])
    def test_persistent_storage_rejects_path_keys(self, tmp_path, key):
        storage = PersistentStorage(tmp_path / "cache")
        with pytest.raises(ValueError):
            storage.set_item(key, "{}")
        assert not (tmp_path / "escape.json").exists()

    def test_save_with_bad_key_is_logged(self, cache, tmp_path):
        cache.set("a", 1)
        StorageCache(PersistentStorage(tmp_path), storage_key="../outside").save(cache)
        assert not (tmp_path.parent / "outside.json").exists()


class TestStorageCache:
    def test_save_and_load(self, cache, clock):
        storage = SessionStorage()
        store = StorageCache(storage)
        cache.set("a", {"name": "Ubud"}, ttl=5000, tags=["packages"])
        cache.set("b", [1, 2])
        store.save(cache)

        saved = json.loads(storage.get_item("app_cache"))
        assert {e["key"] for e in saved} == {"a", "b"}

        other = CacheManager(clock=clock, autostart=False)
        store.load(other)
        assert other.get("a") == {"name": "Ubud"}
        assert other.get("b") == [1, 2]
        assert other.clear_by_tags(["packages"]) == 1

    def test_load_missing_is_noop(self, cache):
        cache.set("a", 1)
        StorageCache(SessionStorage()).load(cache)
        assert cache.get("a") == 1

    def test_load_corrupt_keeps_state(self, cache):
        storage = SessionStorage()
        storage.set_item("app_cache", "{not json")
        cache.set("a", 1)
        StorageCache(storage).load(cache)
        assert cache.get("a") == 1

    def test_load_wrong_shape_keeps_state(self, cache):
        storage = SessionStorage()
        storage.set_item("app_cache", json.dumps([{"key": "x"}]))
        cache.set("a", 1)
        StorageCache(storage).load(cache)
        assert cache.get_keys() == ["a"]

    def test_load_skips_expired(self, cache, clock):
        storage = SessionStorage()
        store = StorageCache(storage)
        cache.set("short", 1, ttl=10)
        cache.set("long", 2, ttl=10_000)
        store.save(cache)
        clock.advance(100)
        store.load(cache)
        assert cache.get_keys() == ["long"]

    def test_save_failure_is_swallowed(self, cache):
        storage = SessionStorage()
        cache.set("a", object())
        StorageCache(storage).save(cache)
        assert storage.get_item("app_cache") is None

    def test_save_storage_error_is_swallowed(self, cache):
        class FullStorage(SessionStorage):
            def set_item(self, key, value):
                raise OSError("quota exceeded")

        cache.set("a", 1)
        StorageCache(FullStorage()).save(cache)

    def test_clear(self, cache):
        storage = SessionStorage()
        store = StorageCache(storage, storage_key="slot")
        cache.set("a", 1)
        store.save(cache)
        store.clear()
        assert storage.get_item("slot") is None


class TestRepeatingTask:
    def test_start_without_loop(self):
        task = RepeatingTask(1, lambda: None)
        assert task.start() is False
        assert task.running is False

    def test_run_once_swallows_errors(self):
        def boom():
            raise ValueError("nope")

        assert RepeatingTask(1, boom).run_once() is None

    @pytest.mark.asyncio
    async def test_runs_periodically_until_cancelled(self):
        ticks = []
        task = RepeatingTask(0.01, lambda: ticks.append(1), name="tick")
        assert task.start() is True
        assert task.start() is True
        await asyncio.sleep(0.05)
        task.cancel()
        task.cancel()
        seen = len(ticks)
        assert seen >= 1
        await asyncio.sleep(0.03)
        assert len(ticks) == seen
        assert task.running is False


class TestCachePersistence:
    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self, clock):
        storage = SessionStorage()
        seed = CacheManager(clock=clock, autostart=False)
        seed.set("a", 1)
        StorageCache(storage).save(seed)

        manager = CacheManager(clock=clock, autostart=False)
        persistence = CachePersistence(manager, StorageCache(storage), save_interval=60)
        persistence.startup()
        assert manager.get("a") == 1
        assert manager.sweeper.running is True
        assert persistence.saver.running is True

        manager.set("b", 2)
        persistence.shutdown()
        assert manager.get_size() == 0
        assert manager.sweeper.running is False
        assert persistence.saver.running is False

        restored = CacheManager(clock=clock, autostart=False)
        StorageCache(storage).load(restored)
        assert sorted(restored.get_keys()) == ["a", "b"]

    def test_periodic_save(self, cache):
        storage = SessionStorage()
        persistence = CachePersistence(cache, StorageCache(storage), save_interval=60)
        cache.set("a", 1)
        persistence.saver.run_once()
        assert storage.get_item("app_cache") is not None
