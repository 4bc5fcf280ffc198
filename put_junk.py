# /// script
# dependencies = [
#   "redis", "requests", "python-dotenv"
# ]
# ///

"""
Fill a Redis server (or the HTTP datastore) with random keys that expire.

Usage:
    put-junk --addr localhost:6379 --key-prefix junk- --expiration 1h
    put-junk --backend datastore --url http://127.0.0.1:3333 --num-keys 1000

SIGINT and SIGTERM stop every worker before its next key.
"""

import argparse
import logging
import os
import random
import re
import signal
import sys
from datetime import timedelta

from dotenv import load_dotenv

from junk import Context, Options, junk
from writers import BACKENDS, DEFAULT_DATASTORE_URL, DEFAULT_REDIS_ADDR, open_writer

logger = logging.getLogger(__name__)

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text):
    """
    Parses a duration such as ``1h``, ``1h30m``, ``1.5s`` or ``250ms``.
    A bare ``0`` is accepted as zero.
    """
    s = text.strip()
    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueError("empty duration")
    seconds = 0.0
    pos = 0
    for m in _DURATION_PART.finditer(s):
        if m.start() != pos:
            break
        seconds += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"invalid duration {text!r}")
    return timedelta(seconds=seconds)


def _duration_arg(text):
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _count_arg(text):
    n = int(text)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {text}")
    return n


def setup_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser():
    parser = argparse.ArgumentParser(
        description="Fill a key-value store with junk.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--backend", choices=BACKENDS, default="redis", help="Store to write to")
    parser.add_argument("--addr", default=os.getenv("JUNK_ADDR", DEFAULT_REDIS_ADDR),
                        help="Socket address of the Redis server in host:port notation.")
    parser.add_argument("--url", default=os.getenv("JUNK_URL", DEFAULT_DATASTORE_URL),
                        help="Base URL of the HTTP datastore.")
    parser.add_argument("--key-prefix", default=os.getenv("JUNK_KEY_PREFIX", "junk-"),
                        help="Prefix for keys written by this program.")
    parser.add_argument("--expiration", type=_duration_arg, default="1h",
                        help="Expiration for keys written by this program (e.g. 1h, 30m, 1h30m, 500ms).")
    parser.add_argument("--num-keys", type=_count_arg, default=0, help="Number of keys to write (0 for 51200)")
    parser.add_argument("--value-length", type=_count_arg, default=0, help="Value length in bytes (0 for 10240)")
    parser.add_argument("--parallelism", type=_count_arg, default=0, help="Number of concurrent writers (0 for 4)")
    parser.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible keys and values")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO",
                        help="Logging level")
    return parser


def install_signal_handlers(ctx):
    def handler(signum, frame):
        logger.warning(f"{signal.Signals(signum).name} received - terminating...")
        ctx.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, handler)


def main(argv=None):
    load_dotenv()

    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    opts = Options(
        key_prefix=args.key_prefix,
        expiration=args.expiration,
        num_keys=args.num_keys,
        value_length=args.value_length,
        parallelism=args.parallelism,
    )
    rng = random.Random(args.seed)

    ctx = Context(timeout=args.timeout)
    install_signal_handlers(ctx)

    try:
        client = open_writer(args.backend, addr=args.addr, url=args.url)
    except ValueError as e:
        logger.error(str(e))
        return 1

    try:
        junk(ctx, client, opts, rng)
    except Exception as e:
        logger.error(f"Filling failed: {e}")
        return 1
    finally:
        client.close()

    logger.info("Done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
