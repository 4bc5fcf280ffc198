"""
Integration tests for filling real stores.

Datastore tests launch the executable pointed to by the DAT_EXE_PATH
environment variable, with its data in a temporary directory under /tmp, and
are skipped when it is not set. Redis tests talk to the server at
JUNK_REDIS_ADDR (host:port) and are skipped when it is not set.

Environment Variables:
  - DAT_EXE_PATH: Path to the datastore executable.
  - JUNK_REDIS_ADDR: Address of a Redis server that may be written to.

Usage:
  Run the tests with:
      pytest test/test_integration.py
"""

import os
import random
import shutil
import subprocess
import tempfile
import time
from datetime import timedelta

import pytest
import requests

from junk import Context, Options, fill
from writers import DatastoreWriter, RedisWriter

# The datastore listens on 0.0.0.0:3333 by default; connect via localhost.
SERVICE_URL = "http://127.0.0.1:3333"


def start_datastore(storage_dir):
    """
    Starts the datastore service as a subprocess using the given storage
    directory and waits until it answers.
    """
    env = os.environ.copy()
    env["DAT_STORAGE_DIR"] = storage_dir

    exe_path = os.environ.get("DAT_EXE_PATH")
    if not exe_path:
        pytest.skip("DAT_EXE_PATH environment variable not set")
    proc = subprocess.Popen(
        [exe_path],
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )

    # Wait for the service to be up by polling a non-existent key.
    for _ in range(10):
        try:
            r = requests.get(f"{SERVICE_URL}/d/nonexistent", timeout=1)
            if r.status_code in (404, 200):
                break
        except requests.RequestException:
            time.sleep(0.5)
    else:
        proc.kill()
        pytest.skip("Datastore service did not start in time")
    return proc


@pytest.fixture
def datastore_instance():
    storage_dir = tempfile.mkdtemp(prefix="datastore_", dir="/tmp")
    proc = start_datastore(storage_dir)
    try:
        yield SERVICE_URL
    finally:
        proc.terminate()
        proc.wait(timeout=5)
        shutil.rmtree(storage_dir)


class Remembering:
    """Passes writes through to a writer and remembers what was written."""

    def __init__(self, inner):
        self.inner = inner
        self.items = {}

    def set(self, key, value, ttl):
        self.inner.set(key, value, ttl)
        self.items[key] = value


def test_fill_datastore(datastore_instance):
    """
    Every key written by a parallel fill can be read back with its value.
    """
    w = Remembering(DatastoreWriter(datastore_instance))
    opts = Options(key_prefix="junk-", expiration=timedelta(hours=1),
                   num_keys=500, value_length=256, parallelism=8)
    fill(Context(), w, opts, random.Random(3))
    w.inner.close()

    assert len(w.items) == 500
    for key, value in w.items.items():
        r = requests.get(f"{datastore_instance}/d/{key}")
        r.raise_for_status()
        assert r.text == value


@pytest.fixture
def redis_writer():
    addr = os.environ.get("JUNK_REDIS_ADDR")
    if not addr:
        pytest.skip("JUNK_REDIS_ADDR environment variable not set")
    w = RedisWriter(addr)
    try:
        yield w
    finally:
        w.close()


def test_fill_redis(redis_writer):
    prefix = f"junk-test-{os.getpid()}-"
    opts = Options(key_prefix=prefix, expiration=timedelta(seconds=30),
                   num_keys=200, value_length=64, parallelism=4)
    fill(Context(), redis_writer, opts, random.Random(4))

    client = redis_writer.client
    keys = list(client.scan_iter(match=f"{prefix}*"))
    try:
        assert len(keys) == 200
        for key in keys[:10]:
            assert len(client.get(key)) == 64
            assert 0 < client.ttl(key) <= 30
    finally:
        if keys:
            client.delete(*keys)
