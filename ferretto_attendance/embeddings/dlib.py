"""Dlib face embedding provider."""

import bz2
import logging
import shutil
import threading
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np

from ..constants import EMBEDDING_DIM, ModelSettings, get_model_settings
from ..errors import ModelLoadError
from .base import BaseEmbeddingProvider

logger = logging.getLogger(__name__)

SHAPE_PREDICTOR_FILE = "shape_predictor_68_face_landmarks.dat"
FACE_RECOGNITION_FILE = "dlib_face_recognition_resnet_model_v1.dat"
CNN_DETECTOR_FILE = "mmod_human_face_detector.dat"


@dataclass
class _DlibModels:
    dlib: Any
    detector: Any
    shape_predictor: Any
    face_rec: Any
    use_cnn: bool


# Loaded models shared by every provider in the process
_MODEL_CACHE: Dict[Tuple[str, str], _DlibModels] = {}
_CACHE_LOCK = threading.Lock()


def clear_model_cache():
    """Forget loaded models so the next ensure_ready() reloads them."""
    with _CACHE_LOCK:
        _MODEL_CACHE.clear()


class DlibEmbeddingProvider(BaseEmbeddingProvider):
    """Face embedding using dlib's ResNet face recognition model (128D).

    Detection uses dlib's HOG detector (fast) or its CNN detector
    (accurate, slow), followed by the 68-point shape predictor for
    alignment.
    """

    def __init__(self, settings: Optional[ModelSettings] = None):
        """Initialize dlib embedding provider.

        Args:
            settings: Model settings (uses global config if None)
        """
        self.settings = settings or get_model_settings()
        if self.settings.detector not in ("hog", "cnn"):
            raise ValueError(f"Unknown detector: {self.settings.detector}")
        self._models: Optional[_DlibModels] = None

    @property
    def name(self) -> str:
        return "dlib"

    @property
    def embedding_dim(self) -> int:
        return EMBEDDING_DIM

    @property
    def is_ready(self) -> bool:
        return self._models is not None

    def ensure_ready(self) -> None:
        if self._models is not None:
            return

        key = (self.settings.detector, str(Path(self.settings.model_dir).resolve()))
        with _CACHE_LOCK:
            models = _MODEL_CACHE.get(key)
            if models is None:
                models = self._load_models()
                _MODEL_CACHE[key] = models
        self._models = models

    def _load_models(self) -> _DlibModels:
        """Load detector, shape predictor and descriptor network."""
        try:
            import dlib
        except ImportError as e:
            raise ModelLoadError("dlib is required. Install with: pip install dlib") from e

        use_cnn = self.settings.detector == "cnn"
        predictor_file = self._resolve_model_file(SHAPE_PREDICTOR_FILE)
        rec_file = self._resolve_model_file(FACE_RECOGNITION_FILE)
        cnn_file = self._resolve_model_file(CNN_DETECTOR_FILE) if use_cnn else None

        try:
            if use_cnn:
                detector = dlib.cnn_face_detection_model_v1(str(cnn_file))
            else:
                detector = dlib.get_frontal_face_detector()
            shape_predictor = dlib.shape_predictor(str(predictor_file))
            face_rec = dlib.face_recognition_model_v1(str(rec_file))
        except RuntimeError as e:
            raise ModelLoadError(f"Failed to initialize dlib models: {e}") from e

        logger.info(f"Loaded dlib models ({self.settings.detector} detector) from {predictor_file.parent}")
        return _DlibModels(dlib, detector, shape_predictor, face_rec, use_cnn)

    def _resolve_model_file(self, filename: str) -> Path:
        """Find a model file locally, downloading it once if missing."""
        model_dir = Path(self.settings.model_dir)
        target = model_dir / filename

        if target.exists():
            return target

        url = self.settings.models_base_url.rstrip("/") + f"/{filename}.bz2"
        archive = target.with_name(filename + ".bz2")
        try:
            model_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Downloading {url} to {target}...")
            urllib.request.urlretrieve(url, str(archive))
            with bz2.open(archive, "rb") as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except (OSError, EOFError, ValueError) as e:
            target.unlink(missing_ok=True)
            raise ModelLoadError(f"Failed to fetch model {filename} from {url}: {e}") from e
        finally:
            archive.unlink(missing_ok=True)

        logger.info(f"Model {filename} downloaded successfully")
        return target

    def detect_embedding(self, frame: np.ndarray) -> Optional[np.ndarray]:
        self._require_ready()
        if frame is None or frame.size == 0:
            return None

        models = self._models

        # dlib expects RGB
        if frame.ndim == 2:
            rgb = cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
        else:
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        scale = 1.0
        width = rgb.shape[1]
        if self.settings.detection_width and width > self.settings.detection_width:
            scale = self.settings.detection_width / width
            small = cv2.resize(rgb, (0, 0), fx=scale, fy=scale)
        else:
            small = rgb

        best = self._best_detection(models, small)
        if best is None:
            return None

        rect = models.dlib.rectangle(
            int(best.left() / scale),
            int(best.top() / scale),
            int(best.right() / scale),
            int(best.bottom() / scale),
        )
        shape = models.shape_predictor(rgb, rect)
        descriptor = models.face_rec.compute_face_descriptor(rgb, shape)
        return self._finalize(descriptor)

    def _best_detection(self, models: _DlibModels, image: np.ndarray):
        """Return the rectangle of the highest-scoring face, or None."""
        upsample = self.settings.upsample_num_times

        if models.use_cnn:
            detections = models.detector(image, upsample)
            candidates = [(d.rect, d.confidence) for d in detections]
        else:
            rects, scores, _ = models.detector.run(image, upsample, self.settings.min_detection_score)
            candidates = list(zip(rects, scores))

        candidates = [c for c in candidates if c[1] >= self.settings.min_detection_score]
        if not candidates:
            return None

        if len(candidates) > 1:
            logger.debug(f"{len(candidates)} faces in frame, using the highest-scoring one")
        rect, _ = max(candidates, key=lambda c: c[1])
        return rect
