"""Tests for embedding providers."""

import bz2
import sys
import urllib.error
from unittest.mock import MagicMock

import numpy as np
import pytest


class FakeRect:
    def __init__(self, left, top, right, bottom):
        self._box = (left, top, right, bottom)

    def left(self):
        return self._box[0]

    def top(self):
        return self._box[1]

    def right(self):
        return self._box[2]

    def bottom(self):
        return self._box[3]


@pytest.fixture(autouse=True)
def fresh_model_cache():
    from ferretto_attendance.embeddings.dlib import clear_model_cache

    clear_model_cache()
    yield
    clear_model_cache()


@pytest.fixture
def fake_dlib(monkeypatch):
    """Replace the dlib module with a mock."""
    module = MagicMock(name="dlib")
    module.face_recognition_model_v1.return_value.compute_face_descriptor.return_value = [0.5] * 128
    monkeypatch.setitem(sys.modules, "dlib", module)
    return module


@pytest.fixture
def model_settings(tmp_path):
    from ferretto_attendance.constants import ModelSettings

    model_dir = tmp_path / "models"
    model_dir.mkdir()
    for name in (
        "shape_predictor_68_face_landmarks.dat",
        "dlib_face_recognition_resnet_model_v1.dat",
        "mmod_human_face_detector.dat",
    ):
        (model_dir / name).write_bytes(b"model")
    return ModelSettings(model_dir=str(model_dir), models_base_url="http://models.invalid/")


class TestDlibEmbeddingProvider:
    """Test cases for DlibEmbeddingProvider."""

    def test_properties(self, model_settings):
        from ferretto_attendance import DlibEmbeddingProvider

        provider = DlibEmbeddingProvider(model_settings)
        assert provider.name == "dlib"
        assert provider.embedding_dim == 128
        assert not provider.is_ready

    def test_invalid_detector(self, model_settings):
        from dataclasses import replace
        from ferretto_attendance import DlibEmbeddingProvider

        with pytest.raises(ValueError):
            DlibEmbeddingProvider(replace(model_settings, detector="tiny"))

    def test_detect_before_ready(self, model_settings):
        """Using the provider before ensure_ready() fails."""
        from ferretto_attendance import DlibEmbeddingProvider, ModelsUnavailable

        provider = DlibEmbeddingProvider(model_settings)
        with pytest.raises(ModelsUnavailable):
            provider.detect_embedding(np.zeros((48, 64, 3), dtype=np.uint8))

    def test_ensure_ready_loads_once(self, model_settings, fake_dlib):
        """Models are loaded once per process and shared by providers."""
        from ferretto_attendance import DlibEmbeddingProvider

        first = DlibEmbeddingProvider(model_settings)
        first.ensure_ready()
        first.ensure_ready()
        second = DlibEmbeddingProvider(model_settings)
        second.ensure_ready()

        assert first.is_ready and second.is_ready
        assert fake_dlib.face_recognition_model_v1.call_count == 1
        assert fake_dlib.shape_predictor.call_count == 1
        fake_dlib.cnn_face_detection_model_v1.assert_not_called()

    def test_cnn_detector(self, model_settings, fake_dlib):
        from dataclasses import replace
        from ferretto_attendance import DlibEmbeddingProvider

        DlibEmbeddingProvider(replace(model_settings, detector="cnn")).ensure_ready()
        fake_dlib.cnn_face_detection_model_v1.assert_called_once()

    def test_missing_dlib(self, model_settings, monkeypatch):
        from ferretto_attendance import DlibEmbeddingProvider, ModelLoadError

        monkeypatch.setitem(sys.modules, "dlib", None)
        with pytest.raises(ModelLoadError):
            DlibEmbeddingProvider(model_settings).ensure_ready()

    def test_download_failure(self, tmp_path, fake_dlib, monkeypatch):
        from ferretto_attendance import DlibEmbeddingProvider, ModelLoadError
        from ferretto_attendance.constants import ModelSettings

        def fail(url, path):
            raise urllib.error.URLError("offline")

        monkeypatch.setattr("urllib.request.urlretrieve", fail)
        provider = DlibEmbeddingProvider(ModelSettings(model_dir=str(tmp_path / "empty")))

        with pytest.raises(ModelLoadError):
            provider.ensure_ready()
        assert not provider.is_ready
        assert list((tmp_path / "empty").iterdir()) == []

    def test_download_decompresses(self, tmp_path, fake_dlib, monkeypatch):
        from ferretto_attendance import DlibEmbeddingProvider
        from ferretto_attendance.constants import ModelSettings

        urls = []

        def fetch(url, path):
            urls.append(url)
            with open(path, "wb") as f:
                f.write(bz2.compress(b"weights"))

        monkeypatch.setattr("urllib.request.urlretrieve", fetch)
        model_dir = tmp_path / "models"
        DlibEmbeddingProvider(ModelSettings(model_dir=str(model_dir), models_base_url="http://m.test/")).ensure_ready()

        assert "http://m.test/shape_predictor_68_face_landmarks.dat.bz2" in urls
        assert (model_dir / "dlib_face_recognition_resnet_model_v1.dat").read_bytes() == b"weights"
        assert not list(model_dir.glob("*.bz2"))

    def test_detect_picks_best_face(self, model_settings, fake_dlib):
        """The highest-scoring detection is embedded."""
        from ferretto_attendance import DlibEmbeddingProvider

        weak, strong = FakeRect(1, 2, 11, 12), FakeRect(20, 5, 40, 30)
        fake_dlib.get_frontal_face_detector.return_value.run.return_value = ([weak, strong], [0.4, 1.3], [0, 0])

        provider = DlibEmbeddingProvider(model_settings)
        provider.ensure_ready()
        embedding = provider.detect_embedding(np.zeros((48, 64, 3), dtype=np.uint8))

        fake_dlib.rectangle.assert_called_once_with(20, 5, 40, 30)
        assert embedding.shape == (128,)
        assert embedding.dtype == np.float32
        assert not embedding.flags.writeable

    def test_detect_no_face(self, model_settings, fake_dlib):
        from ferretto_attendance import DlibEmbeddingProvider

        fake_dlib.get_frontal_face_detector.return_value.run.return_value = ([], [], [])

        provider = DlibEmbeddingProvider(model_settings)
        provider.ensure_ready()

        assert provider.detect_embedding(np.zeros((48, 64, 3), dtype=np.uint8)) is None
        fake_dlib.face_recognition_model_v1.return_value.compute_face_descriptor.assert_not_called()

    def test_detect_scales_back_to_frame(self, model_settings, fake_dlib):
        """Detections on the downscaled frame map back to full resolution."""
        from dataclasses import replace
        from ferretto_attendance import DlibEmbeddingProvider

        fake_dlib.get_frontal_face_detector.return_value.run.return_value = ([FakeRect(10, 10, 50, 50)], [1.0], [0])

        provider = DlibEmbeddingProvider(replace(model_settings, detection_width=320))
        provider.ensure_ready()
        provider.detect_embedding(np.zeros((480, 640, 3), dtype=np.uint8))

        fake_dlib.rectangle.assert_called_once_with(20, 20, 100, 100)


class TestProviderRegistry:
    """Test cases for create_embedding_provider."""

    def test_create_default(self, model_settings):
        from ferretto_attendance import DlibEmbeddingProvider, create_embedding_provider

        assert isinstance(create_embedding_provider(settings=model_settings), DlibEmbeddingProvider)

    def test_unknown_backend(self, model_settings):
        from ferretto_attendance import create_embedding_provider

        with pytest.raises(ValueError):
            create_embedding_provider("facenet", settings=model_settings)
