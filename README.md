# redisfallback

A Redis cache wrapper that keeps working when Redis goes away.

While Redis is reachable, values are written to Redis and also kept in
memory. When Redis stops answering, the wrapper switches to fallback mode.
In that mode, values are kept in memory and a background writer saves them
to JSON files on disk in batches. A background health check pings Redis at a
fixed interval. When Redis answers again, the wrapper does three things:

1. It loads the JSON files back into memory.
2. It writes every item that has not expired to Redis, with the time it has
   left to live.
3. It deletes the local files and any folders left empty.

## Installation

```
pip install redisfallback
```

## Usage

```python
import redis

from redisfallback.client import RedisFallback
from redisfallback.config import Config, Options, RedisConfig

config = Config(
    redis=RedisConfig(host="localhost", port=6379, db=0),
    options=Options(db_path="./files/redisFallback/db", max_retry=3),
)
client = redis.Redis(host="localhost", port=6379, db=0)

with RedisFallback(config, client) as cache:
    cache.set("greeting", "hello", 60)      # expires after 60 seconds
    print(cache.get("greeting"))            # "hello"
    print(cache.is_healthy())               # False while in fallback mode
    cache.delete("greeting")
```

`RedisFallback(config, client)` takes:

- `config`: the settings. Missing sections and out-of-range values get their
  defaults. If it is `None`, all defaults are used.
- `client`: a Redis client object. If it is `None`, a `redis.Redis` is built
  from `config.redis`.

On start the client is pinged. The wrapper starts in normal mode if Redis
answers and in fallback mode if it does not.

- `set(key, value, ttl=0)`: `ttl` is in seconds and may be an `int`, a
  `float` or a `datetime.timedelta`. A `ttl` of `0` or less keeps the value
  until it is deleted.
- `get(key)`: returns the stored value. It raises
  `redisfallback.logger.FallbackError` when the key is missing or expired, or
  when the file for the key cannot be parsed.
- `delete(key)`: removes the key from memory and disk. When healthy it also
  removes the key from Redis, and raises `FallbackError` if that fails.
- `cleanup_expired()`: drops expired items from memory and disk and returns
  how many it dropped. The same cleanup also runs by itself every 30 seconds.
- `close()`: stops the health check, the writer and the cleanup threads. It
  writes out any values still waiting, then closes the Redis client and the
  logger. Leaving the `with` block calls `close()`.

## Configuration

Everything is in `redisfallback.config`, except `LogConfig`.

- `RedisConfig`:
  - `host`: default `localhost`.
  - `port`: default `6379`.
  - `password`.
  - `db`: 0 to 15, default `0`.
- `Options`:
  - `db_path`: where fallback JSON files live. The default is
    `./files/redisFallback/db`.
  - `max_retry`: how many times a Redis read or write is tried before
    switching to fallback. The default is `3`.
  - `max_queue`: the size of the write queue. When the queue is full, an item
    is written to disk at once. The default is `1000`.
  - `time_to_write`: how often, in seconds, queued writes go to disk. The
    default is `3`.
  - `time_to_check`: how often, in seconds, Redis is pinged while in
    fallback. The default is `60`.
- `LogConfig` (in `redisfallback.logger`):
  - `path`: the log directory. If `Config.log` is left out, the directory is
    `./logs/redisFallback`.
  - `stdout`: whether to echo log lines to stdout and stderr.
  - `max_size`: in bytes, default 16 MiB. When a log file is opened and it is
    already larger than this, it is renamed with a timestamp suffix.

  Logs are written to `debug.log`, `output.log` and `error.log`.
- `EmailConfig`: SMTP settings, used by `redisfallback.notify`.

`Config.normalized()` returns a copy of the settings with every default
filled in.

## On-disk layout

Each key is stored at `<db_path>/<db>/<aa>/<bb>/<cc>/<md5>.json`. Here
`<md5>` is the hex MD5 of the key, and `aa`, `bb` and `cc` are its first three
pairs of hex digits. `redisfallback.config.get_path(config, key)` returns
this location as a `CachePath`. Each file holds a JSON object with these
fields:

- `key`
- `data`
- `type`
- `timestamp`
- `ttl`: left out when it is zero.

## Notifications

`redisfallback.notify` has two functions:

- `build_message(email, ip, reason)`: composes a plain mail with From, To, Cc
  and Subject headers.
- `send_email(email, logger, ip, reason)`: sends that mail over SMTP. It uses
  STARTTLS when the server offers it, and logs in when a username is set. It
  does nothing when `email` is `None`, and it logs failures instead of
  raising.

The subject and body can be replaced by the `subject` and `body` callables
in `EmailConfig`.

## What it does not do

- There is no command-line tool. The package is a library only.
- `RedisFallback` does not send e-mail when it switches modes. The
  notification helpers must be called by your own code.
- Values written while healthy are stored in Redis as compact JSON with any
  surrounding quotes stripped. They are not stored as the records kept on
  disk.