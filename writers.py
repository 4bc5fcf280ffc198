"""
Write backends for put-junk.

Each writer exposes ``set(key, value, ttl)`` and raises on failure. Retrying
is left to the underlying client.
"""

import logging
import threading
from datetime import timedelta

import redis
import requests
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_REDIS_ADDR = "localhost:6379"
DEFAULT_DATASTORE_URL = "http://127.0.0.1:3333"

# Failed commands are retried this many times by redis-py before giving up.
REDIS_MAX_RETRIES = 2


def split_addr(addr):
    """Splits a ``host:port`` socket address."""
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid address {addr!r}, expected host:port")
    return host, int(port)


class RedisWriter:
    """Writes keys with SET, expiring them through EX or PX."""

    def __init__(self, addr=DEFAULT_REDIS_ADDR, client=None):
        if client is None:
            host, port = split_addr(addr)
            client = redis.Redis(
                host=host,
                port=port,
                retry=Retry(ExponentialBackoff(cap=0.512, base=0.008), REDIS_MAX_RETRIES),
                retry_on_error=[redis.exceptions.ConnectionError, redis.exceptions.TimeoutError],
            )
        self.client = client

    def set(self, key, value, ttl: timedelta):
        if ttl <= timedelta(0):
            self.client.set(key, value)
            return
        # PX has millisecond resolution; shorter TTLs round up to 1ms
        ms = max(ttl // timedelta(milliseconds=1), 1)
        if ms % 1000:
            self.client.set(key, value, px=ms)
        else:
            self.client.set(key, value, ex=ms // 1000)

    def close(self):
        self.client.close()


class DatastoreWriter:
    """
    Writes keys to the HTTP datastore with ``PUT /d/{key}``.

    The datastore has no notion of expiry, so ``ttl`` is accepted and dropped.
    Every thread gets its own ``requests.Session``.
    """

    def __init__(self, url=DEFAULT_DATASTORE_URL, timeout=10):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._local = threading.local()
        self._sessions = []
        self._sessions_lock = threading.Lock()

    def _session(self):
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def set(self, key, value, ttl=None):
        r = self._session().put(f"{self.url}/d/{key}", data=value, timeout=self.timeout)
        r.raise_for_status()

    def close(self):
        with self._sessions_lock:
            for session in self._sessions:
                session.close()
            self._sessions.clear()


BACKENDS = ("redis", "datastore")


def open_writer(backend, addr=DEFAULT_REDIS_ADDR, url=DEFAULT_DATASTORE_URL):
    if backend == "redis":
        logger.info(f"Writing to Redis at {addr}")
        return RedisWriter(addr)
    if backend == "datastore":
        logger.info(f"Writing to datastore at {url}")
        return DatastoreWriter(url)
    raise ValueError(f"unknown backend {backend!r}, expected one of {', '.join(BACKENDS)}")
