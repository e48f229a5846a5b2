"""Background writer that persists cached items as JSON files."""

from __future__ import annotations

import json
import os
import queue
import threading
import time
from typing import Optional

from redisfallback.config import CacheItem, Config, get_path
from redisfallback.logger import FallbackError, Logger

_POLL_INTERVAL = 0.05


class Writer:
    """Collects write requests and flushes them to disk on a fixed interval."""

    def __init__(self, config: Config, logger: Logger) -> None:
        self.config = config.normalized()
        self.logger = logger
        self.interval = self.config.options.time_to_write
        self._queue: "queue.Queue[tuple[str, CacheItem]]" = queue.Queue(
            maxsize=self.config.options.max_queue
        )
        self._pending: dict[str, CacheItem] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def enqueue(self, key: str, item: CacheItem) -> bool:
        """Queue ``item`` for a later write.

        Returns True if it was queued; when the queue is full the item is
        written straight away and False is returned.
        """
        try:
            self._queue.put_nowait((key, item))
        except queue.Full:
            self.write_to_file(key, item)
            return False
        return True

    def start(self) -> None:
        """Run the background loop; calling it twice has no further effect."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="redisfallback-writer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the loop and write out whatever is still waiting."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._drain()
        self.write()

    def _drain(self) -> None:
        while True:
            try:
                key, item = self._queue.get_nowait()
            except queue.Empty:
                return
            with self._lock:
                self._pending[key] = item

    def _run(self) -> None:
        next_tick = time.monotonic() + self.interval
        while not self._stop.is_set():
            remaining = next_tick - time.monotonic()
            if remaining <= 0:
                self.write()
                next_tick = time.monotonic() + self.interval
                continue
            try:
                key, item = self._queue.get(timeout=min(remaining, _POLL_INTERVAL))
            except queue.Empty:
                continue
            with self._lock:
                self._pending[key] = item

    def write(self) -> None:
        """Write every pending item to its file; failures are logged."""
        with self._lock:
            if not self._pending:
                return
            batch = self._pending
            self._pending = {}
        for key, item in batch.items():
            if not isinstance(item, CacheItem):
                continue
            try:
                self.write_to_file(key, item)
            except FallbackError:
                pass

    def write_to_file(self, key: str, item: CacheItem) -> None:
        """Write ``item`` as JSON to the file that belongs to ``key``."""
        path = get_path(self.config, key)
        try:
            os.makedirs(path.folder_path, exist_ok=True)
        except OSError as exc:
            raise self.logger.error(exc, "Failed to create folder") from exc
        try:
            payload = json.dumps(item.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise self.logger.error(exc, "Failed to parse") from exc
        try:
            with open(path.filepath, "w", encoding="utf-8") as handle:
                handle.write(payload)
        except OSError as exc:
            raise self.logger.error(exc, "Failed to write file") from exc