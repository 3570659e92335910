"""Pytest configuration and fixtures."""

import itertools
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ferretto_attendance.capture import CaptureSession
from ferretto_attendance.constants import CameraSettings, FaceSettings
from ferretto_attendance.embeddings import BaseEmbeddingProvider
from ferretto_attendance.storage import JsonAppStore


def make_embedding(seed: int, dim: int = 128) -> np.ndarray:
    """Deterministic unit-length embedding."""
    rng = np.random.default_rng(seed)
    v = rng.standard_normal(dim).astype(np.float32)
    return v / np.linalg.norm(v)


def blend(a: np.ndarray, b: np.ndarray, weight: float) -> np.ndarray:
    """Vector between a and b; weight 1.0 returns a."""
    v = weight * a + (1.0 - weight) * b
    return (v / np.linalg.norm(v)).astype(np.float32)


class ScriptedProvider(BaseEmbeddingProvider):
    """Embedding provider returning a fixed script of results."""

    def __init__(self, script: List[Optional[np.ndarray]], repeat: bool = True):
        self._script = itertools.cycle(script) if repeat else iter(script)
        self._ready = False
        self.ensure_ready_calls = 0
        self.calls = 0

    @property
    def name(self) -> str:
        return "scripted"

    @property
    def embedding_dim(self) -> int:
        return 128

    @property
    def is_ready(self) -> bool:
        return self._ready

    def ensure_ready(self) -> None:
        self.ensure_ready_calls += 1
        self._ready = True

    def detect_embedding(self, frame):
        self._require_ready()
        self.calls += 1
        return next(self._script, None)


class FakeVideoCapture:
    """Stand-in for cv2.VideoCapture."""

    def __init__(self, device, opened: bool = True, frames: bool = True):
        self.device = device
        self.opened = opened
        self.frames = frames
        self.props = {}
        self.release_count = 0

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        if not self.frames:
            return False, None
        return True, np.zeros((48, 64, 3), dtype=np.uint8)

    def release(self):
        self.release_count += 1


class CameraFactory:
    """Records every FakeVideoCapture it creates."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created: List[FakeVideoCapture] = []

    def __call__(self, device):
        capture = FakeVideoCapture(device, **self.kwargs)
        self.created.append(capture)
        return capture

    @property
    def release_count(self) -> int:
        return sum(c.release_count for c in self.created)


@pytest.fixture
def face_settings():
    """Fast settings for controller tests."""
    return FaceSettings(
        match_threshold=0.62,
        reg_samples_target=10,
        min_samples_floor=4,
        reg_interval_ms=1,
        scan_interval_ms=1,
        scan_timeout_ms=1000,
    )


@pytest.fixture
def camera_settings():
    return CameraSettings(front_device="fake-front", rear_device="fake-rear")


@pytest.fixture
def camera_factory():
    return CameraFactory()


@pytest.fixture
def make_session(camera_settings, camera_factory):
    """Build a CaptureSession around a scripted provider."""
    def _make(script, repeat=True):
        provider = ScriptedProvider(script, repeat=repeat)
        return CaptureSession(provider, settings=camera_settings, capture_factory=camera_factory)
    return _make


@pytest.fixture
def store(tmp_path):
    """JSON store seeded with the demo users (ids 1 and 2)."""
    return JsonAppStore(str(tmp_path / "data.json"))


@pytest.fixture
def reference():
    return make_embedding(0)
