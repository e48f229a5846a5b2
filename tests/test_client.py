import json
import os
import threading
import time
from datetime import timedelta
from unittest import mock

import pytest

from redisfallback.client import RedisFallback
from redisfallback.config import CacheItem, Config, Options, get_path
from redisfallback.logger import FallbackError, LogConfig


class FakePipeline:
    def __init__(self, parent):
        self.parent = parent
        self.ops = []

    def set(self, key, value, ex=None):
        self.ops.append((key, value, ex))
        return self

    def execute(self):
        results = [self.parent.set(key, value, ex=ex) for key, value, ex in self.ops]
        self.ops = []
        return results


class FakeRedis:
    def __init__(self, down=False):
        self.store = {}
        self.expiry = {}
        self.down = down
        self.fail_set = False
        self.fail_delete = False
        self.get_calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def _check(self):
        if self.down:
            raise ConnectionError("connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        with self._lock:
            self.get_calls += 1
        self._check()
        value = self.store.get(key)
        return value.encode() if value is not None else None

    def set(self, key, value, ex=None):
        self._check()
        if self.fail_set:
            raise ConnectionError("write failed")
        with self._lock:
            self.store[key] = value.decode() if isinstance(value, bytes) else value
            self.expiry[key] = ex
        return True

    def delete(self, *keys):
        self._check()
        if self.fail_delete:
            raise ConnectionError("delete failed")
        with self._lock:
            for key in keys:
                self.store.pop(key, None)
        return len(keys)

    def pipeline(self, **kwargs):
        return FakePipeline(self)

    def close(self):
        self.closed = True


def _config(tmp_path, **options):
    settings = {"db_path": str(tmp_path / "db"), "max_retry": 2, "time_to_write": 3600.0, "time_to_check": 3600.0}
    settings.update(options)
    return Config(log=LogConfig(path=str(tmp_path / "logs")), options=Options(**settings))


def _wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


@pytest.fixture
def make_store(tmp_path):
    instances = []

    def factory(client, **options):
        store = RedisFallback(_config(tmp_path, **options), client)
        instances.append(store)
        return store

    yield factory
    for store in instances:
        store.close()


def test_starts_healthy_when_ping_succeeds(make_store):
    store = make_store(FakeRedis())
    assert store.is_healthy() is True


def test_starts_in_fallback_when_ping_fails(make_store):
    store = make_store(FakeRedis(down=True))
    assert store.is_healthy() is False


def test_set_healthy_writes_encoded_string(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    store.set("greeting", "hello")
    assert fake.store["greeting"] == "hello"
    assert fake.expiry["greeting"] is None
    assert store.get("greeting") == "hello"


def test_set_healthy_writes_compact_json(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    store.set("obj", {"x": 1})
    assert fake.store["obj"] == '{"x":1}'
    assert store.get("obj") == {"x": 1}


def test_set_ttl_as_seconds_and_timedelta(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    store.set("a", "v", 5)
    store.set("b", "v", timedelta(seconds=30))
    assert fake.expiry["a"] == 5
    assert fake.expiry["b"] == 30


def test_get_reads_cache_record_from_redis(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    fake.store["remote"] = json.dumps(CacheItem(key="remote", data=[1, 2]).to_dict())
    assert store.get("remote") == [1, 2]
    assert store.is_healthy() is True


def test_healthy_miss_retries_then_falls_back(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    with pytest.raises(FallbackError, match="Not found"):
        store.get("missing")
    assert fake.get_calls == 2
    assert store.is_healthy() is False


def test_set_failure_switches_to_fallback_and_keeps_value(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    fake.fail_set = True
    store.set("k", "v")
    assert store.is_healthy() is False
    assert "k" not in fake.store
    assert store.get("k") == "v"


def test_fallback_missing_key_raises(make_store):
    store = make_store(FakeRedis(down=True))
    with pytest.raises(FallbackError, match="Not found"):
        store.get("nothing")


def test_fallback_writes_file_that_a_new_instance_reads(tmp_path, make_store):
    first = make_store(FakeRedis(down=True))
    first.set("n", 5)
    first.close()
    path = get_path(first.config, "n")
    with open(path.filepath, encoding="utf-8") as handle:
        record = CacheItem.from_dict(json.load(handle))
    assert record.key == "n"
    assert record.data == 5
    assert record.type == "int"

    second = make_store(FakeRedis(down=True))
    assert second.get("n") == 5


def test_delete_healthy_removes_from_redis(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    store.set("gone", "v")
    store.delete("gone")
    assert "gone" not in fake.store


def test_delete_failure_raises(make_store):
    fake = FakeRedis()
    store = make_store(fake)
    store.set("k", "v")
    fake.fail_delete = True
    with pytest.raises(FallbackError, match="Failed to delete"):
        store.delete("k")


def test_delete_in_fallback_removes_file(make_store):
    first = make_store(FakeRedis(down=True))
    first.set("k", "v")
    first.close()
    path = get_path(first.config, "k").filepath
    assert os.path.exists(path)
    second = make_store(FakeRedis(down=True))
    second.delete("k")
    assert not os.path.exists(path)
    with pytest.raises(FallbackError, match="Not found"):
        second.get("k")


def test_cleanup_expired_drops_only_expired(make_store):
    store = make_store(FakeRedis(down=True))
    store.set("temp", "x", 1)
    store.set("keep", "y")
    with mock.patch("time.time", return_value=time.time() + 100):
        removed = store.cleanup_expired()
    assert removed == 1
    assert store.get("keep") == "y"
    with pytest.raises(FallbackError, match="Not found"):
        store.get("temp")


def test_expired_item_in_healthy_mode_raises(make_store):
    store = make_store(FakeRedis())
    store.set("short", "v", 1)
    with mock.patch("time.time", return_value=time.time() + 100):
        with pytest.raises(FallbackError, match="Not found"):
            store.get("short")


def test_recovery_syncs_files_to_redis(make_store):
    fake = FakeRedis(down=True)
    store = make_store(fake, time_to_check=0.05, time_to_write=0.05)
    store.set("session", "abc", 60)
    path = get_path(store.config, "session").filepath
    assert _wait_for(lambda: os.path.exists(path))
    fake.down = False
    assert _wait_for(store.is_healthy)
    assert fake.store["session"] == "abc"
    assert 0 < fake.expiry["session"] <= 60
    assert not os.path.exists(path)


def test_context_manager_closes_client(tmp_path):
    fake = FakeRedis()
    with RedisFallback(_config(tmp_path), fake) as store:
        store.set("k", "v")
        assert store.get("k") == "v"
    assert fake.closed is True