"""Face enrollment controller.

Turns a burst of camera captures into one reference embedding:

    IDLE -> CAPTURING -> COMPLETED | LOW_SAMPLES | CANCELLED

Each tick awaits exactly one capture before the next tick is scheduled.
The reference embedding is written only on COMPLETED.
"""

import asyncio
import logging
from typing import Callable, List, Optional

import numpy as np

from .capture import CaptureHandle, CaptureSession
from .constants import FaceSettings, get_face_settings
from .similarity import mean_embedding
from .storage import ActivityLog, IdentityStore
from .types import EnrollmentProgress, EnrollmentResult, EnrollmentState, IdentityId

logger = logging.getLogger(__name__)


class EnrollmentController:
    """Collects samples for one identity and stores their mean."""

    def __init__(
        self,
        session: CaptureSession,
        identity_store: IdentityStore,
        activity_log: Optional[ActivityLog] = None,
        settings: Optional[FaceSettings] = None,
        on_progress: Optional[Callable[[EnrollmentProgress], None]] = None,
        prefer_front_facing: bool = True,
    ):
        """Initialize enrollment controller.

        Args:
            session: Camera session used for captures
            identity_store: Receives the reference embedding on success
            activity_log: Optional audit trail
            settings: Face settings (uses global config if None)
            on_progress: Called after every tick with the current progress
            prefer_front_facing: Use the front (user-facing) camera
        """
        self.session = session
        self.identity_store = identity_store
        self.activity_log = activity_log
        self.settings = settings or get_face_settings()
        self.on_progress = on_progress
        self.prefer_front_facing = prefer_front_facing

        self._state = EnrollmentState.IDLE
        self._starting = False
        self._identity_id: Optional[IdentityId] = None
        self._samples: List[np.ndarray] = []
        self._sample_count = 0
        self._ticks = 0
        self._error: Optional[BaseException] = None
        self._stop_requested = False
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[EnrollmentResult] = None

    @property
    def state(self) -> EnrollmentState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == EnrollmentState.CAPTURING

    @property
    def _busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def target(self) -> int:
        return self.settings.reg_samples_target

    @property
    def samples_collected(self) -> int:
        return self._sample_count

    @property
    def ticks_processed(self) -> int:
        return self._ticks

    @property
    def progress(self) -> EnrollmentProgress:
        return EnrollmentProgress(self._sample_count, self._ticks, self.target)

    @property
    def progress_percent(self) -> int:
        return self.progress.percent

    @property
    def result(self) -> Optional[EnrollmentResult]:
        return self._result

    async def start(self, identity_id: IdentityId) -> None:
        """Open the camera and begin collecting samples.

        Calling start() while a run is active does nothing.

        Raises:
            ModelLoadError: Face models could not be loaded
            CameraError: The camera could not be opened
        """
        if self._starting or self._busy:
            logger.debug("Enrollment already running, ignoring start()")
            return

        self._stop_requested = False
        self._starting = True
        try:
            await self.session.prepare()
            handle = None if self._stop_requested else await self.session.open(self.prefer_front_facing)
        finally:
            self._starting = False

        self._identity_id = identity_id
        self._samples = []
        self._sample_count = 0
        self._ticks = 0
        self._error = None
        self._result = None
        self._wakeup = asyncio.Event()

        if self._stop_requested:
            self.session.close(handle)
            self._task = None
            self._set_result(EnrollmentState.CANCELLED)
            logger.info(f"Enrollment for {identity_id} cancelled before capturing")
            return

        self._state = EnrollmentState.CAPTURING
        logger.info(f"Enrollment started for {identity_id} (target {self.target} samples)")

        self._task = asyncio.create_task(self._run(handle))

    async def wait(self) -> EnrollmentResult:
        """Wait for the current run to reach a terminal state."""
        if self._task is None:
            if self._result is None:
                raise RuntimeError("Enrollment has not been started")
            return self._result
        await self._task
        return self._result

    async def run(self, identity_id: IdentityId) -> EnrollmentResult:
        """Start enrollment and wait for the outcome."""
        await self.start(identity_id)
        return await self.wait()

    async def cancel(self) -> None:
        """Stop collecting, release the camera and discard all samples.

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

    async def _run(self, handle: CaptureHandle) -> None:
        outcome = EnrollmentState.CANCELLED
        try:
            outcome = await self._collect(handle)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            outcome = EnrollmentState.IDLE
            self._error = e
            logger.exception(f"Enrollment for {self._identity_id} failed")
            raise
        finally:
            self._samples = []
            self.session.close(handle)
            self._set_result(outcome)
            logger.info(f"Enrollment for {self._identity_id} ended: {outcome.value}")

    def _set_result(self, outcome: EnrollmentState) -> None:
        self._state = outcome
        self._result = EnrollmentResult(
            state=outcome,
            identity_id=self._identity_id,
            samples_collected=self._sample_count,
            target=self.target,
            min_required=self.settings.min_valid_samples,
            error=self._error,
        )

    async def _collect(self, handle: CaptureHandle) -> EnrollmentState:
        interval = self.settings.reg_interval_ms / 1000

        while not self._stop_requested:
            try:
                embedding = await self.session.capture_embedding(handle)
            except Exception as e:
                logger.warning(f"Enrollment tick failed: {e}")
                embedding = None

            # A tick that finishes after cancel() is discarded
            if self._stop_requested:
                break

            self._ticks += 1
            if embedding is not None:
                self._samples.append(embedding)
                self._sample_count += 1
            logger.debug(f"Enrollment tick {self._ticks}: {self._sample_count}/{self.target} samples")

            if self.on_progress is not None:
                self.on_progress(self.progress)

            if self._sample_count >= self.target or self._ticks >= self.settings.max_ticks:
                return self._finalize()

            await self._sleep(interval)

        return EnrollmentState.CANCELLED

    def _finalize(self) -> EnrollmentState:
        """Commit the mean embedding, or reject the run."""
        min_needed = self.settings.min_valid_samples
        if self._sample_count < min_needed:
            logger.warning(
                f"Enrollment for {self._identity_id} rejected: "
                f"{self._sample_count} valid samples, need {min_needed}"
            )
            return EnrollmentState.LOW_SAMPLES

        reference = mean_embedding(self._samples)
        self.identity_store.set_reference_embedding(self._identity_id, reference)
        if self.activity_log is not None:
            self.activity_log.log(
                "FACE_REGISTER",
                f"Registered face for {self._identity_id} from {self._sample_count} samples",
                identity_id=self._identity_id,
            )
        return EnrollmentState.COMPLETED

    async def _sleep(self, seconds: float) -> None:
        """Wait for the next tick; cancel() cuts the wait short."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
