"""Ferretto Edu Pro - biometric attendance core.

Face enrollment and verification over a live camera:

    from ferretto_attendance import (
        CaptureSession, DlibEmbeddingProvider, EnrollmentController,
        JsonAppStore, VerificationController,
    )

    store = JsonAppStore("data/ferretto_edu_pro_data.json")
    session = CaptureSession(DlibEmbeddingProvider())

    await EnrollmentController(session, store).run(2)
    result = await VerificationController(session, store, store).run(2)
"""

from .capture import CaptureHandle, CaptureSession
from .embeddings import BaseEmbeddingProvider, DlibEmbeddingProvider, create_embedding_provider
from .enrollment import EnrollmentController
from .errors import (
    AttendanceError,
    CameraError,
    DeviceUnavailable,
    ModelError,
    ModelLoadError,
    ModelsUnavailable,
    NotEnrolled,
    NotSecureContext,
    PermissionDenied,
)
from .similarity import NOT_COMPARABLE, cosine_similarity, mean_embedding
from .storage import JsonAppStore
from .types import (
    AttendanceRecord,
    EnrollmentResult,
    EnrollmentState,
    Location,
    ProbeResult,
    VerificationResult,
    VerificationState,
)
from .verification import VerificationController

__version__ = "4.0.0"

__all__ = [
    "CaptureHandle",
    "CaptureSession",
    "BaseEmbeddingProvider",
    "DlibEmbeddingProvider",
    "create_embedding_provider",
    "EnrollmentController",
    "VerificationController",
    "JsonAppStore",
    "cosine_similarity",
    "mean_embedding",
    "NOT_COMPARABLE",
    "AttendanceRecord",
    "EnrollmentResult",
    "EnrollmentState",
    "Location",
    "ProbeResult",
    "VerificationResult",
    "VerificationState",
    "AttendanceError",
    "CameraError",
    "DeviceUnavailable",
    "ModelError",
    "ModelLoadError",
    "ModelsUnavailable",
    "NotEnrolled",
    "NotSecureContext",
    "PermissionDenied",
]
