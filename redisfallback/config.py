"""Configuration, cache records and on-disk layout for the fallback store."""

from __future__ import annotations

import hashlib
import os
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional

from redisfallback.logger import LogConfig

DEFAULT_LOG_PATH = "./logs/redisFallback"
DEFAULT_LOG_MAX_SIZE = 16 * 1024 * 1024
DEFAULT_DB_PATH = "./files/redisFallback/db"
DEFAULT_MAX_RETRY = 3
DEFAULT_MAX_QUEUE = 1000
DEFAULT_TIME_TO_WRITE = 3.0
DEFAULT_TIME_TO_CHECK = 60.0

DEFAULT_REDIS_HOST = "localhost"
DEFAULT_REDIS_PORT = 6379
DEFAULT_REDIS_DB = 0


@dataclass
class RedisConfig:
    """Connection settings for the Redis server."""

    host: str = DEFAULT_REDIS_HOST
    port: int = DEFAULT_REDIS_PORT
    password: str = ""
    db: int = DEFAULT_REDIS_DB

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class Options:
    """Behaviour of the fallback store; times are in seconds."""

    db_path: str = DEFAULT_DB_PATH
    max_retry: int = DEFAULT_MAX_RETRY
    max_queue: int = DEFAULT_MAX_QUEUE
    time_to_write: float = DEFAULT_TIME_TO_WRITE
    time_to_check: float = DEFAULT_TIME_TO_CHECK


@dataclass
class EmailConfig:
    """SMTP settings for notification mails."""

    host: str
    port: int
    username: str
    password: str
    from_addr: str
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    subject: Optional[Callable[[str, str], str]] = None
    body: Optional[Callable[[str, str], str]] = None


@dataclass
class Config:
    """Top-level configuration; any section may be left out."""

    redis: Optional[RedisConfig] = None
    log: Optional[LogConfig] = None
    options: Optional[Options] = None
    email: Optional[EmailConfig] = None

    def normalized(self) -> "Config":
        """Return a copy with every missing or out-of-range value defaulted."""
        redis_cfg = replace(self.redis) if self.redis is not None else RedisConfig()
        if not redis_cfg.host:
            redis_cfg.host = DEFAULT_REDIS_HOST
        if redis_cfg.port <= 0 or redis_cfg.port > 65535:
            redis_cfg.port = DEFAULT_REDIS_PORT
        if redis_cfg.db < 0 or redis_cfg.db > 15:
            redis_cfg.db = DEFAULT_REDIS_DB

        if self.log is None:
            log_cfg = LogConfig(path=DEFAULT_LOG_PATH, stdout=False, max_size=DEFAULT_LOG_MAX_SIZE)
        else:
            log_cfg = replace(self.log)
        if not log_cfg.path:
            log_cfg.path = DEFAULT_LOG_PATH
        if log_cfg.max_size <= 0:
            log_cfg.max_size = DEFAULT_LOG_MAX_SIZE

        opts = replace(self.options) if self.options is not None else Options()
        if not opts.db_path:
            opts.db_path = DEFAULT_DB_PATH
        if opts.max_retry <= 0:
            opts.max_retry = DEFAULT_MAX_RETRY
        if opts.max_queue <= 0:
            opts.max_queue = DEFAULT_MAX_QUEUE
        if opts.time_to_write <= 0:
            opts.time_to_write = DEFAULT_TIME_TO_WRITE
        if opts.time_to_check <= 0:
            opts.time_to_check = DEFAULT_TIME_TO_CHECK

        return Config(redis=redis_cfg, log=log_cfg, options=opts, email=self.email)


@dataclass
class CacheItem:
    """A cached value together with its bookkeeping."""

    key: str
    data: Any
    type: str = ""
    timestamp: int = 0
    ttl: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping; ``ttl`` is left out when it is zero."""
        result: dict[str, Any] = {
            "key": self.key,
            "data": self.data,
            "type": self.type,
            "timestamp": self.timestamp,
        }
        if self.ttl:
            result["ttl"] = self.ttl
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheItem":
        """Build an item from a decoded JSON object."""
        if not isinstance(data, Mapping):
            raise ValueError("cache record must be a JSON object")
        try:
            return cls(
                key=str(data.get("key", "")),
                data=data.get("data"),
                type=str(data.get("type", "")),
                timestamp=int(data.get("timestamp", 0)),
                ttl=int(data.get("ttl", 0)),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid cache record: {exc}") from exc

    def is_expired(self, now: Optional[int] = None) -> bool:
        """True once the TTL has passed; items without a TTL never expire."""
        if self.ttl <= 0:
            return False
        if now is None:
            now = int(time.time())
        return now > self.timestamp + self.ttl


@dataclass(frozen=True)
class CachePath:
    """Where an item lives on disk."""

    folder_path: str
    filepath: str
    filename: str


def get_path(config: Config, key: str) -> CachePath:
    """Locate the JSON file for ``key`` under the configured database folder."""
    cfg = config.normalized()
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    filename = digest + ".json"
    folder = os.path.join(
        cfg.options.db_path, str(cfg.redis.db), digest[0:2], digest[2:4], digest[4:6]
    )
    return CachePath(folder_path=folder, filepath=os.path.join(folder, filename), filename=filename)


def is_expired(item: CacheItem) -> bool:
    """True if ``item`` has outlived its TTL."""
    return item.is_expired()