"""Face verification controller.

Scans live captures against an identity's reference embedding:

    IDLE -> SCANNING -> MATCHED | NO_MATCH | CANCELLED | ERROR

An attendance record is appended only on MATCHED, exactly once per run.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Optional

import numpy as np

from .capture import CaptureHandle, CaptureSession
from .constants import FaceSettings, get_face_settings
from .errors import NotEnrolled
from .geolocation import BaseGeolocationProvider, NullGeolocationProvider
from .similarity import NOT_COMPARABLE, cosine_similarity
from .storage import ActivityLog, AttendanceStore, IdentityStore
from .types import (
    AttendanceRecord,
    IdentityId,
    ProbeResult,
    VerificationResult,
    VerificationState,
)

logger = logging.getLogger(__name__)


class VerificationController:
    """Marks attendance when a live face matches the stored reference."""

    def __init__(
        self,
        session: CaptureSession,
        identity_store: IdentityStore,
        attendance_store: AttendanceStore,
        geolocation: Optional[BaseGeolocationProvider] = None,
        activity_log: Optional[ActivityLog] = None,
        settings: Optional[FaceSettings] = None,
        method_tag: str = "Face Biometric (dlib)",
        geolocation_timeout_ms: int = 5000,
        prefer_front_facing: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize verification controller.

        Args:
            session: Camera session used for captures
            identity_store: Source of reference embeddings
            attendance_store: Receives one record per match
            geolocation: Location lookup for matched records
            activity_log: Optional audit trail
            settings: Face settings (uses global config if None)
            method_tag: Capture method written to attendance records
            geolocation_timeout_ms: Bound on the location lookup
            prefer_front_facing: Use the front (user-facing) camera
            clock: Monotonic time source in seconds
        """
        self.session = session
        self.identity_store = identity_store
        self.attendance_store = attendance_store
        self.geolocation = geolocation or NullGeolocationProvider()
        self.activity_log = activity_log
        self.settings = settings or get_face_settings()
        self.method_tag = method_tag
        self.geolocation_timeout_ms = geolocation_timeout_ms
        self.prefer_front_facing = prefer_front_facing
        self._clock = clock

        self._state = VerificationState.IDLE
        self._starting = False
        self._identity_id: Optional[IdentityId] = None
        self._reference: Optional[np.ndarray] = None
        self._started_at = 0.0
        self._best_similarity = NOT_COMPARABLE
        self._similarity: Optional[float] = None
        self._error: Optional[BaseException] = None
        self._record: Optional[AttendanceRecord] = None
        self._ticks = 0
        self._stop_requested = False
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[VerificationResult] = None

    @property
    def state(self) -> VerificationState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == VerificationState.SCANNING

    @property
    def _busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def best_similarity(self) -> float:
        return self._best_similarity

    @property
    def ticks_processed(self) -> int:
        return self._ticks

    @property
    def result(self) -> Optional[VerificationResult]:
        return self._result

    def _reference_for(self, identity_id: IdentityId) -> np.ndarray:
        reference = self.identity_store.get_reference_embedding(identity_id)
        if reference is None:
            raise NotEnrolled(identity_id)
        return reference

    async def start(self, identity_id: IdentityId) -> None:
        """Open the camera and begin scanning.

        Calling start() while a scan is active does nothing.

        Raises:
            NotEnrolled: The identity has no reference embedding
            ModelLoadError: Face models could not be loaded
            CameraError: The camera could not be opened
        """
        if self._starting or self._busy:
            logger.debug("Verification already running, ignoring start()")
            return

        reference = self._reference_for(identity_id)

        self._stop_requested = False
        self._starting = True
        try:
            await self.session.prepare()
            handle = None if self._stop_requested else await self.session.open(self.prefer_front_facing)
        finally:
            self._starting = False

        self._reset(identity_id, reference)
        if self._stop_requested:
            self.session.close(handle)
            self._task = None
            self._state = VerificationState.CANCELLED
            self._finish(VerificationState.CANCELLED)
            logger.info(f"Verification for {identity_id} cancelled before scanning")
            return

        self._started_at = self._clock()
        self._state = VerificationState.SCANNING
        logger.info(f"Verification started for {identity_id}")

        self._task = asyncio.create_task(self._run(handle))

    def _reset(self, identity_id: IdentityId, reference: np.ndarray) -> None:
        self._identity_id = identity_id
        self._reference = reference
        self._best_similarity = NOT_COMPARABLE
        self._similarity = None
        self._error = None
        self._record = None
        self._result = None
        self._ticks = 0
        self._wakeup = asyncio.Event()

    async def wait(self) -> VerificationResult:
        """Wait for the current scan to reach a terminal state."""
        if self._task is None:
            if self._result is None:
                raise RuntimeError("Verification has not been started")
            return self._result
        await self._task
        return self._result

    async def run(self, identity_id: IdentityId) -> VerificationResult:
        """Start scanning and wait for the outcome."""
        await self.start(identity_id)
        return await self.wait()

    async def cancel(self) -> None:
        """Stop scanning and release the camera without recording anything.

        A cancel() that arrives while start() is still opening the camera
        makes that start() release the camera and end in CANCELLED.
        """
        if self._starting:
            self._stop_requested = True
            return
        if not self.is_running:
            return

        self._stop_requested = True
        self._wakeup.set()
        await asyncio.wait({self._task})

    stop = cancel

    async def _run(self, handle: CaptureHandle) -> None:
        identity_id = self._identity_id
        outcome = VerificationState.CANCELLED
        try:
            outcome = await self._scan(handle)
        finally:
            self.session.close(handle)
            self._state = outcome
            self._finish(outcome)

        if outcome == VerificationState.MATCHED:
            self._record = await self._mark_attendance(identity_id, self._similarity)
            self._finish(outcome)

    def _finish(self, outcome: VerificationState) -> None:
        self._result = VerificationResult(
            state=outcome,
            identity_id=self._identity_id,
            best_similarity=self._best_similarity,
            threshold=self.settings.match_threshold,
            similarity=self._similarity,
            record=self._record,
            error=self._error,
        )

    async def _scan(self, handle: CaptureHandle) -> VerificationState:
        interval = self.settings.scan_interval_ms / 1000
        timeout = self.settings.scan_timeout_ms / 1000
        threshold = self.settings.match_threshold

        while not self._stop_requested:
            try:
                embedding = await self.session.capture_embedding(handle)
            except Exception as e:
                logger.error(f"Verification tick failed: {e}")
                self._error = e
                return VerificationState.ERROR

            # A tick that finishes after cancel() is discarded
            if self._stop_requested:
                break

            self._ticks += 1
            if embedding is not None:
                similarity = cosine_similarity(embedding, self._reference)
                self._best_similarity = max(self._best_similarity, similarity)
                logger.debug(f"Verification tick {self._ticks}: similarity {similarity:.3f}")

                if similarity >= threshold:
                    self._similarity = similarity
                    logger.info(f"Face matched for {self._identity_id} ({similarity:.1%})")
                    return VerificationState.MATCHED

            if self._clock() - self._started_at > timeout:
                logger.info(
                    f"No match for {self._identity_id} within {self.settings.scan_timeout_ms} ms "
                    f"(best {self._best_similarity:.3f})"
                )
                return VerificationState.NO_MATCH

            await self._sleep(interval)

        return VerificationState.CANCELLED

    async def _mark_attendance(self, identity_id: IdentityId, similarity: float) -> AttendanceRecord:
        location = await self.geolocation.get_best_effort_location(self.geolocation_timeout_ms)
        now = datetime.now()

        record = AttendanceRecord(
            id=int(now.timestamp() * 1000),
            identity_id=identity_id,
            date=now.strftime("%Y-%m-%d"),
            time=now.strftime("%H:%M:%S"),
            similarity=round(similarity, 3),
            lat=location.lat,
            lng=location.lng,
            accuracy=location.accuracy,
            method=self.method_tag,
        )
        self.attendance_store.append_record(record)
        if self.activity_log is not None:
            self.activity_log.log(
                "ATTENDANCE", f"Marked ({round(similarity * 100)}%)", identity_id=identity_id
            )
        return record

    async def probe(self, identity_id: IdentityId) -> ProbeResult:
        """Compare a single capture against the reference.

        Nothing is recorded. A frame without a face scores -1.

        Raises:
            NotEnrolled: The identity has no reference embedding
            ModelLoadError: Face models could not be loaded
            CameraError: The camera could not be opened
        """
        reference = self._reference_for(identity_id)
        await self.session.prepare()

        async with self.session.scoped(self.prefer_front_facing) as handle:
            embedding = await self.session.capture_embedding(handle)

        similarity = cosine_similarity(embedding, reference)
        logger.info(f"Face test for {identity_id}: similarity {similarity:.3f}")
        return ProbeResult(similarity=similarity, threshold=self.settings.match_threshold)

    async def _sleep(self, seconds: float) -> None:
        """Wait for the next tick; cancel() cuts the wait short."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
