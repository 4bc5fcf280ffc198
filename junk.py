"""
Fill a key-value store with junk.

The work is split into one share per worker. Every worker generates random
keys and values and writes them through a client exposing
``set(key, value, ttl)``. The first error seen by any worker, including the
cancellation of the shared context, is raised once all workers have stopped.
"""

import logging
import random
import string
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import timedelta

logger = logging.getLogger(__name__)

DEFAULT_NUM_KEYS = 51200
DEFAULT_VALUE_LENGTH = 10240
DEFAULT_PARALLELISM = 4

KEY_SUFFIX_LENGTH = 32
ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits


class JunkError(Exception):
    """Base class for errors raised by the junk writer itself."""


class Cancelled(JunkError):
    def __init__(self, message="context cancelled"):
        super().__init__(message)


class DeadlineExceeded(Cancelled):
    def __init__(self, message="context deadline exceeded"):
        super().__init__(message)


class Context:
    """
    Cancellation signal shared by all workers of a run.

    ``done()`` never blocks. Once the context is cancelled, or its optional
    deadline has passed, ``err()`` returns the reason and keeps returning it.
    """

    def __init__(self, timeout=None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._err = None
        self._deadline = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout

    def cancel(self, reason=None):
        with self._lock:
            if self._err is None:
                self._err = reason if reason is not None else Cancelled()
        self._event.set()

    def done(self):
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel(DeadlineExceeded())
            return True
        return False

    def err(self):
        if not self.done():
            return None
        return self._err


@dataclass(frozen=True)
class Options:
    key_prefix: str = ""
    expiration: timedelta = timedelta(0)
    num_keys: int = 0
    value_length: int = 0
    parallelism: int = 0

    def with_defaults(self) -> "Options":
        """Returns a copy with every zero-valued count replaced by its default."""
        return replace(
            self,
            num_keys=self.num_keys or DEFAULT_NUM_KEYS,
            value_length=self.value_length or DEFAULT_VALUE_LENGTH,
            parallelism=self.parallelism or DEFAULT_PARALLELISM,
        )


def key_shares(keys: int, workers: int) -> list:
    """
    Splits ``keys`` into ``workers`` equal shares. The remainder goes to the
    last share, so ``key_shares(10, 3) == [3, 3, 4]``.
    """
    if workers < 1:
        raise ValueError(f"workers must be at least 1, got {workers}")
    if keys < 0:
        raise ValueError(f"keys must not be negative, got {keys}")
    share, remainder = divmod(keys, workers)
    shares = [share] * workers
    shares[-1] += remainder
    return shares


def random_string(length, rng=random):
    return "".join(rng.choices(ALPHABET, k=length))


def generate_key(prefix, rng=random):
    return prefix + random_string(KEY_SUFFIX_LENGTH, rng)


def generate_value(length, rng=random):
    return random_string(length, rng)


class _FirstError:
    """Keeps the first error it is given and ignores the rest."""

    def __init__(self):
        self._lock = threading.Lock()
        self.error = None

    def set(self, err):
        if err is None:
            return
        with self._lock:
            if self.error is None:
                self.error = err


def fill(ctx: Context, client, opts: Options, rng: random.Random = None):
    """
    Writes ``opts.num_keys`` junk items using ``opts.parallelism`` workers.

    Options are used exactly as given; see ``junk`` for the defaulting entry
    point. Raises the first error any worker ran into.
    """
    shares = key_shares(opts.num_keys, opts.parallelism)
    if opts.value_length < 0:
        raise ValueError(f"value_length must not be negative, got {opts.value_length}")
    if rng is None:
        rng = random.Random()
    # one independent source per worker, drawn before any worker starts
    worker_rngs = [random.Random(rng.getrandbits(64)) for _ in shares]
    first_err = _FirstError()

    def work(n, keys, wrng):
        for _ in range(keys):
            if ctx.done():
                first_err.set(ctx.err())
                return
            k = generate_key(opts.key_prefix, wrng)
            v = generate_value(opts.value_length, wrng)
            try:
                client.set(k, v, opts.expiration)
            except Exception as e:
                first_err.set(e)
                return
        logger.debug(f"worker {n} wrote {keys} keys")

    logger.debug(
        f"writing {opts.num_keys} keys of {opts.value_length} bytes "
        f"with {opts.parallelism} workers, shares {shares}"
    )
    with ThreadPoolExecutor(max_workers=opts.parallelism) as executor:
        futures = [
            executor.submit(work, n, keys, wrng)
            for n, (keys, wrng) in enumerate(zip(shares, worker_rngs))
        ]
        wait(futures)

    # re-raise anything work() did not catch
    for future in futures:
        future.result()

    if first_err.error is not None:
        raise first_err.error


def junk(ctx: Context, client, opts: Options, rng: random.Random = None):
    """Fills the store through ``client`` after applying default options."""
    fill(ctx, client, opts.with_defaults(), rng)
