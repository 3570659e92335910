"""Attendance core types."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import numpy as np

# 128D float32 face descriptor
Embedding = np.ndarray

IdentityId = Union[int, str]


class EnrollmentState(Enum):
    """Enrollment controller states."""
    IDLE = "idle"
    CAPTURING = "capturing"
    COMPLETED = "completed"
    LOW_SAMPLES = "low_samples"
    CANCELLED = "cancelled"


class VerificationState(Enum):
    """Verification controller states."""
    IDLE = "idle"
    SCANNING = "scanning"
    MATCHED = "matched"
    NO_MATCH = "no_match"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class Location:
    """Best-effort device location; all fields None when unknown."""

    lat: Optional[float] = None
    lng: Optional[float] = None
    accuracy: Optional[float] = None

    @property
    def is_known(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass(frozen=True)
class AttendanceRecord:
    """One successful verification."""

    id: int
    identity_id: IdentityId
    date: str
    time: str
    similarity: float
    lat: Optional[float] = None
    lng: Optional[float] = None
    accuracy: Optional[float] = None
    method: str = "Face Biometric (dlib)"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttendanceRecord":
        return cls(
            id=data["id"],
            identity_id=data.get("identity_id", data.get("userId")),
            date=data["date"],
            time=data["time"],
            similarity=data["similarity"],
            lat=data.get("lat"),
            lng=data.get("lng"),
            accuracy=data.get("accuracy"),
            method=data.get("method", cls.method),
        )


@dataclass(frozen=True)
class EnrollmentProgress:
    """Snapshot of an enrollment run after one tick."""

    samples_collected: int
    ticks_processed: int
    target: int

    @property
    def percent(self) -> int:
        pct = round(self.samples_collected / self.target * 100) if self.target else 0
        return max(0, min(100, pct))


@dataclass
class EnrollmentResult:
    """Outcome of one enrollment run."""

    state: EnrollmentState
    identity_id: IdentityId
    samples_collected: int
    target: int
    min_required: int
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.state == EnrollmentState.COMPLETED

    @property
    def summary(self) -> str:
        if self.error is not None:
            return f"Registration failed: {self.error!r}"
        if self.state == EnrollmentState.COMPLETED:
            return f"Face registered from {self.samples_collected}/{self.target} samples"
        if self.state == EnrollmentState.LOW_SAMPLES:
            return (
                f"Face capture not stable: {self.samples_collected} valid samples "
                f"(need {self.min_required}). Try better light and a steady face."
            )
        return f"Registration cancelled after {self.samples_collected}/{self.target} samples"


@dataclass
class VerificationResult:
    """Outcome of one verification run."""

    state: VerificationState
    identity_id: IdentityId
    best_similarity: float
    threshold: float
    similarity: Optional[float] = None
    record: Optional[AttendanceRecord] = None
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.state == VerificationState.MATCHED

    @property
    def summary(self) -> str:
        if self.state == VerificationState.MATCHED:
            return f"Attendance marked ({self.similarity * 100:.0f}%)"
        if self.state == VerificationState.NO_MATCH:
            return (
                f"No match. Best {self.best_similarity * 100:.1f}% "
                f"(need {self.threshold * 100:.0f}%)"
            )
        if self.state == VerificationState.ERROR:
            return f"Attendance scan failed: {self.error}"
        return "Attendance scan cancelled"


@dataclass
class ProbeResult:
    """Outcome of a single-shot face test."""

    similarity: float
    threshold: float

    @property
    def passed(self) -> bool:
        return self.similarity >= self.threshold

    @property
    def summary(self) -> str:
        verdict = "PASS" if self.passed else "FAIL"
        return f"Test {verdict} (Similarity {self.similarity * 100:.1f}%)"
