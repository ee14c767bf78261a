import queue
import random
import threading
import time

import pytest

from chromactl.models import Job, OptionSet, Source


class FakeGenerator:
    """Records concurrency; ``fail(instructions)`` may return an exception to raise."""

    def __init__(self, delay=None, fail=None):
        self.delay = delay
        self.fail = fail
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.calls = []

    def generate(self, source, instructions, shape_hints):
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.calls.append(instructions)
            n = len(self.calls)
        try:
            time.sleep(self.delay if self.delay is not None else random.uniform(0, 0.01))
            exc = self.fail(instructions) if self.fail else None
            if exc is not None:
                raise exc
            return f"mem://{source.id}/{n}"
        finally:
            with self.lock:
                self.active -= 1


class GatedGenerator:
    """Blocks every call until released; announces each entered call."""

    def __init__(self):
        self.entered = queue.Queue()
        self.release = threading.Event()

    def generate(self, source, instructions, shape_hints):
        self.entered.put(instructions)
        if not self.release.wait(timeout=10):
            raise TimeoutError("gate never released")
        return f"mem://{instructions}"


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "sketch.png"
    path.write_bytes(b"\x89PNG fake")
    return Source(name=path.name, path=str(path), options=OptionSet())


@pytest.fixture
def make_jobs(source):
    def _make(n, prefix="job"):
        return [
            Job(source_id=source.id, prompt=f"{prefix}-{i}", summary=f"{prefix} {i}", options=OptionSet())
            for i in range(n)
        ]
    return _make


@pytest.fixture
def image(tmp_path):
    def _image(name="sketch.png"):
        path = tmp_path / name
        path.write_bytes(b"\x89PNG fake")
        return str(path)
    return _image


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    path = tmp_path / "chromactl.db"
    monkeypatch.setenv("CHROMACTL_DB", str(path))
    return str(path)
