import threading

import pytest


class RecordingWriter:
    """
    In-memory stand-in for a store. Records every write and can be told to
    fail, or to run a hook, on each call.
    """

    def __init__(self, fail_with=None, on_set=None):
        self.fail_with = fail_with
        self.on_set = on_set
        self.calls = []
        self.lock = threading.Lock()

    def set(self, key, value, ttl):
        with self.lock:
            self.calls.append((key, value, ttl))
            n = len(self.calls)
        if self.on_set is not None:
            self.on_set(n)
        if self.fail_with is not None:
            raise self.fail_with

    def close(self):
        pass

    @property
    def keys(self):
        return [k for k, _, _ in self.calls]


@pytest.fixture
def writer():
    return RecordingWriter()
