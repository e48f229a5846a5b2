"""Key-value store backed by Redis that falls back to memory and JSON files."""

from __future__ import annotations

import json
import os
import threading
import time
from datetime import timedelta
from typing import Any, Optional, Union

import redis

from redisfallback.config import CacheItem, Config, get_path
from redisfallback.logger import FallbackError, Logger
from redisfallback.writer import Writer

_REDIS_ERRORS = (redis.RedisError, OSError)
_CLEANUP_INTERVAL = 30.0
_PIPELINE_BATCH = 100


def _encode(value: Any) -> str:
    """Serialise a value for Redis: compact JSON with surrounding quotes stripped."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).strip('"')


class RedisFallback:
    """Redis-backed store that keeps working from memory and disk while Redis is down."""

    def __init__(self, config: Optional[Config] = None, client: Any = None) -> None:
        self.config = (config if config is not None else Config()).normalized()
        try:
            self.logger = Logger(self.config.log)
        except FallbackError as exc:
            raise FallbackError(f"Can not initialize logger: {exc}") from exc

        options = self.config.options
        try:
            os.makedirs(options.db_path, exist_ok=True)
        except OSError as exc:
            self.logger.error(exc, "Failed to create DB folder")

        if client is None:
            settings = self.config.redis
            client = redis.Redis(
                host=settings.host,
                port=settings.port,
                password=settings.password or None,
                db=settings.db,
            )
        self.redis = client

        self._cache: dict[str, CacheItem] = {}
        self._cache_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._healthy = False
        self._recovering = False
        self._recovering_lock = threading.Lock()
        self._checker: Optional[threading.Thread] = None
        self._checker_stop: Optional[threading.Event] = None
        self._closed = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None
        self.writer = Writer(self.config, self.logger)

        try:
            self.redis.ping()
        except _REDIS_ERRORS as exc:
            self.logger.error(exc, "Failed to connect, Starting fallback mode")
            self._change_to_fallback_mode()
        else:
            self.logger.info("Starting normal mode")
            self._change_to_normal_mode()

        self.writer.start()
        self._start_memory_cleanup()

    # -- state -------------------------------------------------------------

    def is_healthy(self) -> bool:
        """True while Redis is used as the primary store."""
        with self._state_lock:
            return self._healthy

    def _cache_get(self, key: str) -> Optional[CacheItem]:
        with self._cache_lock:
            return self._cache.get(key)

    def _cache_store(self, key: str, item: CacheItem) -> None:
        with self._cache_lock:
            self._cache[key] = item

    def _cache_delete(self, key: str) -> None:
        with self._cache_lock:
            self._cache.pop(key, None)

    def _remove_file(self, key: str) -> None:
        try:
            os.remove(get_path(self.config, key).filepath)
        except OSError:
            pass

    # -- reading -----------------------------------------------------------

    def get(self, key: str) -> Any:
        """Return the value stored under ``key``; raises FallbackError if absent."""
        if self.is_healthy():
            return self._get_from_redis(key)
        return self._get_from_memory(key)

    def _get_from_redis(self, key: str) -> Any:
        cached = self._cache_get(key)
        if cached is not None:
            if cached.is_expired():
                self._cache_delete(key)
                self._remove_file(key)
                raise self.logger.error(None, "Not found")
            threading.Thread(
                target=self._sync_to_redis, args=(key, cached), daemon=True
            ).start()
            return cached.data

        for _ in range(self.config.options.max_retry):
            try:
                raw = self.redis.get(key)
            except _REDIS_ERRORS:
                continue
            if raw is None:
                continue
            try:
                item = CacheItem.from_dict(json.loads(raw))
            except ValueError:
                continue
            self._cache_store(key, item)
            return item.data

        self.logger.info("[getFromRedis] Switching to fallback mode")
        self._change_to_fallback_mode()
        return self._get_from_memory(key)

    def _get_from_memory(self, key: str) -> Any:
        cached = self._cache_get(key)
        if cached is not None:
            if cached.is_expired():
                self._cache_delete(key)
                raise self.logger.error(None, "Not found")
            return cached.data
        return self._load_from_file(key)

    def _load_from_file(self, key: str) -> Any:
        path = get_path(self.config, key)
        try:
            with open(path.filepath, "rb") as handle:
                raw = handle.read()
        except OSError:
            raise self.logger.error(None, "Not found") from None
        try:
            item = CacheItem.from_dict(json.loads(raw))
        except ValueError:
            raise self.logger.error(None, "Failed to parse") from None
        if item.is_expired():
            self._remove_file(key)
            raise self.logger.error(None, "Not found")
        self._cache_store(key, item)
        return item.data

    # -- writing -----------------------------------------------------------

    def set(self, key: str, value: Any, ttl: Union[int, float, timedelta] = 0) -> None:
        """Store ``value`` under ``key``; a positive ``ttl`` (seconds) sets expiry."""
        seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else ttl
        item = CacheItem(
            key=key,
            data=value,
            type=type(value).__name__,
            timestamp=int(time.time()),
            ttl=int(seconds) if seconds > 0 else 0,
        )
        if self.is_healthy():
            self._set_to_redis(key, item)
        else:
            self._set_to_memory(key, item)

    def _set_to_redis(self, key: str, item: CacheItem) -> None:
        try:
            data = _encode(item.data)
        except (TypeError, ValueError) as exc:
            raise self.logger.error(exc, "Failed to parse") from exc

        for _ in range(self.config.options.max_retry):
            try:
                self.redis.set(key, data, ex=item.ttl or None)
            except _REDIS_ERRORS:
                continue
            self._cache_store(key, item)
            return

        self.logger.info("[setToRedis] Switching to fallback mode")
        self._change_to_fallback_mode()
        self._set_to_memory(key, item)

    def _set_to_memory(self, key: str, item: CacheItem) -> None:
        self._cache_store(key, item)
        self.writer.enqueue(key, item)

    def delete(self, key: str) -> None:
        """Remove ``key`` from memory, disk and, when healthy, from Redis."""
        healthy = self.is_healthy()
        self._cache_delete(key)
        self._remove_file(key)
        if healthy:
            try:
                self.redis.delete(key)
            except _REDIS_ERRORS as exc:
                raise self.logger.error(exc, "Failed to delete") from exc

    def _sync_to_redis(self, key: str, item: CacheItem) -> None:
        try:
            data = _encode(item.data)
        except (TypeError, ValueError) as exc:
            self.logger.error(exc, "Failed to parse")
            return
        try:
            self.redis.set(key, data, ex=item.ttl or None)
        except _REDIS_ERRORS:
            pass

    # -- mode switching ----------------------------------------------------

    def _change_to_fallback_mode(self) -> None:
        with self._state_lock:
            self._healthy = False
            if self._checker is not None or self._closed.is_set():
                return
            stop = threading.Event()
            self._checker_stop = stop
            self._checker = threading.Thread(
                target=self._health_check, args=(stop,), name="redisfallback-checker", daemon=True
            )
            self._checker.start()

    def _health_check(self, stop: threading.Event) -> None:
        while not stop.wait(self.config.options.time_to_check):
            try:
                self.redis.ping()
            except _REDIS_ERRORS:
                continue
            with self._state_lock:
                if self._checker_stop is stop:
                    self._checker = None
                    self._checker_stop = None
            self._change_to_normal_mode()
            return

    def _db_folder(self) -> str:
        return os.path.join(self.config.options.db_path, str(self.config.redis.db))

    def _change_to_normal_mode(self) -> bool:
        folder = self._db_folder()
        files: list[str] = []
        if os.path.isdir(folder):
            errors: list[OSError] = []
            for root, _dirs, names in os.walk(folder, onerror=errors.append):
                files.extend(os.path.join(root, name) for name in names if name.endswith(".json"))
            if errors:
                self.logger.error(errors[0], "Failed to search folder")
                return False

        for filename in files:
            try:
                with open(filename, "rb") as handle:
                    raw = handle.read()
            except OSError as exc:
                self.logger.error(exc, "Failed to read file")
                continue
            try:
                item = CacheItem.from_dict(json.loads(raw))
            except ValueError as exc:
                self.logger.error(exc, "Failed to parse")
                continue
            self._cache_store(item.key, item)

        self._sync_memory_to_redis()
        try:
            self._cleanup_local_files()
        except OSError as exc:
            self.logger.error(exc, "Failed to cleanup")

        with self._state_lock:
            self._healthy = True
        return True

    def _sync_memory_to_redis(self) -> None:
        with self._recovering_lock:
            if self._recovering:
                self.logger.info("Already running recovery")
                return
            self._recovering = True
        try:
            with self._cache_lock:
                snapshot = list(self._cache.items())
            now = int(time.time())
            pipe = self.redis.pipeline()
            count = 0
            for key, item in snapshot:
                if item.is_expired(now):
                    continue
                try:
                    data = _encode(item.data)
                except (TypeError, ValueError) as exc:
                    self.logger.error(exc, "Failed to parse")
                else:
                    if item.ttl <= 0:
                        pipe.set(key, data)
                    else:
                        remaining = item.timestamp + item.ttl - now
                        if remaining > 0:
                            pipe.set(key, data, ex=remaining)
                count += 1
                if count % _PIPELINE_BATCH == 0:
                    self._execute(pipe)
                    pipe = self.redis.pipeline()
            if count % _PIPELINE_BATCH != 0:
                self._execute(pipe)
        finally:
            with self._recovering_lock:
                self._recovering = False

    def _execute(self, pipe: Any) -> None:
        try:
            pipe.execute()
        except _REDIS_ERRORS as exc:
            self.logger.error(exc, "Failed to sync")

    def _cleanup_local_files(self) -> None:
        folder = self._db_folder()
        if not os.path.isdir(folder):
            return
        for root, _dirs, names in os.walk(folder, onerror=lambda exc: self.logger.error(exc, "Failed to search folder")):
            for name in names:
                if not name.endswith(".json"):
                    continue
                try:
                    os.remove(os.path.join(root, name))
                except OSError as exc:
                    self.logger.error(exc, "Failed to remove file")
        self._remove_empty_folders(folder)

    def _remove_empty_folders(self, root: str) -> int:
        removed = 0
        for path, _dirs, _names in os.walk(root, topdown=False):
            if path == root:
                continue
            try:
                if os.listdir(path):
                    continue
                os.rmdir(path)
            except OSError as exc:
                self.logger.error(exc, "Failed to remove path")
            else:
                removed += 1
        return removed

    # -- housekeeping ------------------------------------------------------

    def _start_memory_cleanup(self) -> None:
        with self._recovering_lock:
            if self._recovering:
                self.logger.info("Recovery is in progress")
                return
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop, name="redisfallback-cleanup", daemon=True
        )
        self._cleanup_thread.start()

    def _cleanup_loop(self) -> None:
        while not self._closed.wait(_CLEANUP_INTERVAL):
            self.cleanup_expired()

    def cleanup_expired(self) -> int:
        """Drop expired items from memory and disk; returns how many were dropped."""
        with self._cache_lock:
            expired = [key for key, item in self._cache.items() if item.is_expired()]
            for key in expired:
                del self._cache[key]
        for key in expired:
            self._remove_file(key)
        return len(expired)

    def close(self) -> None:
        """Stop background work, flush pending writes and close connections."""
        if self._closed.is_set():
            return
        self._closed.set()
        with self._state_lock:
            checker, stop = self._checker, self._checker_stop
            self._checker = None
            self._checker_stop = None
        if stop is not None:
            stop.set()
        if checker is not None and checker is not threading.current_thread():
            checker.join()
        self.writer.stop()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join()
            self._cleanup_thread = None
        try:
            self.redis.close()
        except _REDIS_ERRORS:
            pass
        self.logger.close()

    def __enter__(self) -> "RedisFallback":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()