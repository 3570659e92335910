"""Centralized constants and configuration loader.

This module provides access to configuration values and sensible defaults
for the attendance core. Values are loaded from config/config.yaml when
available, otherwise defaults are used.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

# Path to the default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

EMBEDDING_DIM = 128


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Uses default if None.

    Returns:
        Configuration dictionary.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    try:
        if path.exists():
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")

    return {}


def _get_nested(config: Dict, *keys: str, default: Any = None) -> Any:
    """Get nested config value with default fallback."""
    value = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
        else:
            return default
        if value is None:
            return default
    return value


# ============================================================
# Face Settings
# ============================================================

@dataclass
class FaceSettings:
    """Enrollment and verification constants."""
    # Cosine similarity needed to accept a live capture
    match_threshold: float = 0.62
    # Valid samples collected during enrollment
    reg_samples_target: int = 20
    # Ticks allowed before enrollment finalizes (0 = same as target)
    reg_max_ticks: int = 0
    # Lower bound for the minimum number of valid samples
    min_samples_floor: int = 8
    reg_interval_ms: int = 180
    scan_interval_ms: int = 250
    scan_timeout_ms: int = 15000

    def __post_init__(self):
        if self.reg_samples_target <= 0:
            raise ValueError("reg_samples_target must be positive")
        if self.reg_max_ticks < 0:
            raise ValueError("reg_max_ticks must not be negative")
        if not -1.0 <= self.match_threshold <= 1.0:
            raise ValueError("match_threshold must be within [-1, 1]")
        if self.match_threshold <= 0:
            logger.warning(
                f"match_threshold={self.match_threshold} is not positive; "
                "non-comparable embeddings (-1) may be treated as matches"
            )
        if min(self.reg_interval_ms, self.scan_interval_ms, self.scan_timeout_ms) < 0:
            raise ValueError("intervals and timeouts must not be negative")

    @property
    def max_ticks(self) -> int:
        """Tick budget for one enrollment run."""
        return self.reg_max_ticks or self.reg_samples_target

    @property
    def min_valid_samples(self) -> int:
        """Minimum valid samples for an enrollment to be accepted."""
        target = self.reg_samples_target
        return min(target, max(target // 2, self.min_samples_floor))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FaceSettings":
        """Create from config dictionary."""
        face = _get_nested(config, "face") or {}

        return cls(
            match_threshold=face.get("match_threshold", 0.62),
            reg_samples_target=face.get("reg_samples_target", 20),
            reg_max_ticks=face.get("reg_max_ticks", 0),
            min_samples_floor=face.get("min_samples_floor", 8),
            reg_interval_ms=face.get("reg_interval_ms", 180),
            scan_interval_ms=face.get("scan_interval_ms", 250),
            scan_timeout_ms=face.get("scan_timeout_ms", 15000),
        )


# ============================================================
# Camera Settings
# ============================================================

@dataclass
class CameraSettings:
    """Camera device constants."""
    # Device index, file path or stream URL
    front_device: Union[int, str] = 0
    rear_device: Union[int, str] = 0
    width: int = 640
    height: int = 480
    fps: int = 30
    buffer_size: int = 1

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CameraSettings":
        """Create from config dictionary."""
        cam = _get_nested(config, "camera") or {}
        resolution = cam.get("resolution", [640, 480])
        front = cam.get("front_device", 0)

        return cls(
            front_device=front,
            rear_device=cam.get("rear_device", front),
            width=int(resolution[0]),
            height=int(resolution[1]),
            fps=cam.get("fps", 30),
            buffer_size=cam.get("buffer_size", 1),
        )


# ============================================================
# Model Settings
# ============================================================

@dataclass
class ModelSettings:
    """Embedding model constants."""
    backend: str = "dlib"
    # "hog" is fast on small CPUs, "cnn" is more accurate but slower
    detector: str = "hog"
    model_dir: str = "data/models"
    models_base_url: str = "http://dlib.net/files/"
    upsample_num_times: int = 0
    min_detection_score: float = 0.0
    # Frames are downscaled to this width before detection (0 = off)
    detection_width: int = 320

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ModelSettings":
        """Create from config dictionary."""
        models = _get_nested(config, "models") or {}

        return cls(
            backend=models.get("backend", "dlib"),
            detector=models.get("detector", "hog"),
            model_dir=models.get("model_dir", "data/models"),
            models_base_url=models.get("models_base_url", "http://dlib.net/files/"),
            upsample_num_times=models.get("upsample_num_times", 0),
            min_detection_score=models.get("min_detection_score", 0.0),
            detection_width=models.get("detection_width", 320),
        )


# ============================================================
# Storage Settings
# ============================================================

@dataclass
class StorageSettings:
    """Persistence constants."""
    data_file: str = "data/ferretto_edu_pro_data.json"
    max_log_entries: int = 500
    method_tag: str = "Face Biometric (dlib)"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "StorageSettings":
        """Create from config dictionary."""
        st = _get_nested(config, "storage") or {}

        return cls(
            data_file=st.get("data_file", "data/ferretto_edu_pro_data.json"),
            max_log_entries=st.get("max_log_entries", 500),
            method_tag=st.get("method_tag", "Face Biometric (dlib)"),
        )


# ============================================================
# Geolocation Settings
# ============================================================

@dataclass
class GeolocationSettings:
    """Best-effort location constants."""
    # "none", "fixed" or "ip"
    provider: str = "none"
    timeout_ms: int = 5000
    fixed_coordinates: Optional[Tuple[float, float]] = None
    fixed_accuracy: Optional[float] = None
    ip_lookup_url: str = "https://ipapi.co/json/"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "GeolocationSettings":
        """Create from config dictionary."""
        geo = _get_nested(config, "geolocation") or {}
        fixed = geo.get("fixed", {}) or {}

        coords = None
        if fixed.get("lat") is not None and fixed.get("lng") is not None:
            coords = (float(fixed["lat"]), float(fixed["lng"]))

        return cls(
            provider=geo.get("provider", "none"),
            timeout_ms=geo.get("timeout_ms", 5000),
            fixed_coordinates=coords,
            fixed_accuracy=fixed.get("accuracy"),
            ip_lookup_url=geo.get("ip_lookup_url", "https://ipapi.co/json/"),
        )


# ============================================================
# Global Config Instance (lazy loaded)
# ============================================================

class Config:
    """Global configuration singleton."""

    _instance: Optional["Config"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load()
        return cls._instance

    def _load(self, config_path: Optional[Path] = None) -> None:
        """Load configuration from file."""
        self._config = load_config(config_path)
        self._face: Optional[FaceSettings] = None
        self._camera: Optional[CameraSettings] = None
        self._models: Optional[ModelSettings] = None
        self._storage: Optional[StorageSettings] = None
        self._geolocation: Optional[GeolocationSettings] = None

    def reload(self, config_path: Optional[Path] = None) -> None:
        """Reload configuration from file and reset cached sections."""
        self._load(config_path)

    @property
    def face(self) -> FaceSettings:
        """Get face settings."""
        if self._face is None:
            self._face = FaceSettings.from_config(self._config)
        return self._face

    @property
    def camera(self) -> CameraSettings:
        """Get camera settings."""
        if self._camera is None:
            self._camera = CameraSettings.from_config(self._config)
        return self._camera

    @property
    def models(self) -> ModelSettings:
        """Get model settings."""
        if self._models is None:
            self._models = ModelSettings.from_config(self._config)
        return self._models

    @property
    def storage(self) -> StorageSettings:
        """Get storage settings."""
        if self._storage is None:
            self._storage = StorageSettings.from_config(self._config)
        return self._storage

    @property
    def geolocation(self) -> GeolocationSettings:
        """Get geolocation settings."""
        if self._geolocation is None:
            self._geolocation = GeolocationSettings.from_config(self._config)
        return self._geolocation

    def get(self, *keys: str, default: Any = None) -> Any:
        """Get a config value by key path."""
        return _get_nested(self._config, *keys, default=default)


def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()


# Convenience accessors
def get_face_settings() -> FaceSettings:
    """Get face settings."""
    return get_config().face


def get_camera_settings() -> CameraSettings:
    """Get camera settings."""
    return get_config().camera


def get_model_settings() -> ModelSettings:
    """Get model settings."""
    return get_config().models


def get_storage_settings() -> StorageSettings:
    """Get storage settings."""
    return get_config().storage


def get_geolocation_settings() -> GeolocationSettings:
    """Get geolocation settings."""
    return get_config().geolocation
