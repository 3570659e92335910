"""Camera capture session.

A CaptureSession owns the camera device for one enrollment or verification
run. Frames are read and embedded off the event loop so a tick never
blocks other tasks.
"""

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Union
from urllib.parse import urlparse

import cv2
import numpy as np

from .constants import CameraSettings, get_camera_settings
from .embeddings import BaseEmbeddingProvider
from .errors import DeviceUnavailable, NotSecureContext, PermissionDenied

logger = logging.getLogger(__name__)

SECURE_SCHEMES = ("https", "rtsps", "file")
LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")

Device = Union[int, str]


def _normalize_device(device: Device) -> Device:
    if isinstance(device, str) and device.strip().isdigit():
        return int(device)
    return device


def is_secure_source(device: Device) -> bool:
    """Check whether a camera source satisfies the secure transport rule.

    Local devices and files are always allowed. Network streams must use
    TLS unless they point at the loopback interface.
    """
    device = _normalize_device(device)
    if isinstance(device, int):
        return True

    parsed = urlparse(device)
    # No scheme, or a Windows drive letter, means a local path
    if len(parsed.scheme) <= 1:
        return True
    if parsed.scheme.lower() in SECURE_SCHEMES:
        return True
    return parsed.hostname in LOOPBACK_HOSTS


def _device_node(device: Device) -> Optional[Path]:
    """Return the /dev node for a local camera, if there is one."""
    if isinstance(device, int):
        if sys.platform.startswith("linux"):
            return Path(f"/dev/video{device}")
        return None
    if device.startswith("/dev/"):
        return Path(device)
    return None


@dataclass(eq=False)
class CaptureHandle:
    """An open camera stream; only valid until closed."""

    device: Device
    _capture: Any = field(repr=False)
    closed: bool = False
    frames_read: int = 0


class CaptureSession:
    """Camera access for one run, plus frame-to-embedding delegation."""

    def __init__(
        self,
        provider: BaseEmbeddingProvider,
        settings: Optional[CameraSettings] = None,
        capture_factory: Callable[..., Any] = cv2.VideoCapture,
    ):
        """Initialize capture session.

        Args:
            provider: Embedding provider used for every captured frame
            settings: Camera settings (uses global config if None)
            capture_factory: Callable creating a cv2.VideoCapture-like object
        """
        self.provider = provider
        self.settings = settings or get_camera_settings()
        self._capture_factory = capture_factory
        self._handle: Optional[CaptureHandle] = None

    @property
    def in_use(self) -> bool:
        return self._handle is not None and not self._handle.closed

    async def prepare(self) -> None:
        """Make sure the embedding models are loaded.

        Raises:
            ModelLoadError: If the models cannot be fetched or initialized
        """
        if not self.provider.is_ready:
            await asyncio.to_thread(self.provider.ensure_ready)

    async def open(self, prefer_front_facing: bool = True) -> CaptureHandle:
        """Open the camera.

        Args:
            prefer_front_facing: Use the front (user-facing) device

        Returns:
            Handle for capture_embedding() and close()

        Raises:
            NotSecureContext: Stream URL is neither TLS nor loopback
            PermissionDenied: Device node exists but is not accessible
            DeviceUnavailable: Camera busy, missing or failed to open
        """
        device = self.settings.front_device if prefer_front_facing else self.settings.rear_device
        device = _normalize_device(device)

        if not is_secure_source(device):
            raise NotSecureContext(
                f"Camera stream {device} requires a secure transport (https/rtsps or localhost)"
            )

        node = _device_node(device)
        if node is not None and node.exists() and not os.access(node, os.R_OK | os.W_OK):
            raise PermissionDenied(f"No permission to access camera {node}")

        if self.in_use:
            raise DeviceUnavailable(f"Camera {self._handle.device} is already in use")

        capture = await asyncio.to_thread(self._open_device, device)
        self._handle = CaptureHandle(device=device, _capture=capture)
        logger.info(f"Opened camera: {device}")
        return self._handle

    def _open_device(self, device: Device) -> Any:
        try:
            capture = self._capture_factory(device)
        except cv2.error as e:
            raise DeviceUnavailable(f"Failed to open camera {device}: {e}") from e

        if not capture.isOpened():
            capture.release()
            raise DeviceUnavailable(f"Failed to open camera device {device}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.height)
        capture.set(cv2.CAP_PROP_FPS, self.settings.fps)
        capture.set(cv2.CAP_PROP_BUFFERSIZE, self.settings.buffer_size)
        return capture

    async def capture_embedding(self, handle: CaptureHandle) -> Optional[np.ndarray]:
        """Embed the face in the current frame.

        Returns:
            Embedding, or None when the frame has no face or could not
            be read

        Raises:
            DeviceUnavailable: If the handle is closed
        """
        if handle.closed:
            raise DeviceUnavailable(f"Camera {handle.device} is closed")
        return await asyncio.to_thread(self._capture_sync, handle)

    def _capture_sync(self, handle: CaptureHandle) -> Optional[np.ndarray]:
        ret, frame = handle._capture.read()
        if not ret or frame is None:
            logger.debug(f"No frame from camera {handle.device}")
            return None

        handle.frames_read += 1
        return self.provider.detect_embedding(frame)

    def close(self, handle: Optional[CaptureHandle]) -> None:
        """Release the camera. Closing twice is a no-op."""
        if handle is None or handle.closed:
            return

        handle.closed = True
        handle._capture.release()
        if self._handle is handle:
            self._handle = None
        logger.info(f"Camera closed ({handle.frames_read} frames read)")

    @asynccontextmanager
    async def scoped(self, prefer_front_facing: bool = True) -> AsyncIterator[CaptureHandle]:
        """Open the camera for the duration of a block."""
        handle = await self.open(prefer_front_facing)
        try:
            yield handle
        finally:
            self.close(handle)
