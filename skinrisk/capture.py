"""
Capture orchestration: a three-sample live-camera session.

States are small frozen dataclasses and ``transition(state, event)`` is a pure
function, so every edge can be tested without a camera:

    Idle -> CameraStarting -> CameraReady -> Capturing(k) -> CameraReady ... -> Processing -> Complete
    Error      from any non-terminal state (reset() -> Idle)
    Cancelled  from any state before Processing (-> Idle)

``CaptureOrchestrator`` drives the machine against a ``VideoSource``, the
shared detection resources and the feature extractor.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

from skinrisk.aggregation import REQUIRED_SAMPLES, aggregate_samples
from skinrisk.camera import VideoSource
from skinrisk.config import Settings
from skinrisk.errors import (
    CameraAccessError,
    CameraBusy,
    FrameTimeout,
    InvalidTransition,
    ModelLoadError,
    NoFaceDetected,
)
from skinrisk.features import extract_features
from skinrisk.model_manager import ModelLifecycleManager
from skinrisk.models import AggregatedMetrics, SampleResult

logger = logging.getLogger(__name__)

CAPTURE_COUNT = REQUIRED_SAMPLES
FRAME_TIMEOUT_SECONDS = 10.0

# Error kinds (camera kinds mirror CameraAccessError.kind)
PERMISSION_DENIED = CameraAccessError.PERMISSION_DENIED
NO_DEVICE = CameraAccessError.NO_DEVICE
CAMERA_FAILURE = CameraAccessError.FAILURE
CAMERA_BUSY = CameraAccessError.BUSY
MODEL_LOAD = "model_load"
CAPTURE_FAILED = "capture"
PROCESSING_FAILED = "processing"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Camera permission was denied. Allow camera access and try again.",
    NO_DEVICE: "No camera was found. Connect a camera and try again.",
    CAMERA_FAILURE: "Failed to access camera. Please try again.",
    CAMERA_BUSY: "The camera is already in use by another analysis.",
    MODEL_LOAD: "Failed to load skin analysis models. Please try again.",
    CAPTURE_FAILED: "Failed to capture image. Please try again.",
    PROCESSING_FAILED: "Failed to process captures. Please start a new analysis.",
}

NOTICE_TIMEOUT = "Stream timeout: the camera did not deliver a frame. Please capture again."
NOTICE_NO_FACE = "No face detected. Face the camera and capture again."


# -----------------------------------------------------------------------------
# States
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class CameraStarting:
    pass


@dataclass(frozen=True)
class CameraReady:
    samples: Tuple[SampleResult, ...] = ()
    notice: Optional[str] = None


@dataclass(frozen=True)
class Capturing:
    index: int
    samples: Tuple[SampleResult, ...] = ()


@dataclass(frozen=True)
class Processing:
    samples: Tuple[SampleResult, ...]


@dataclass(frozen=True)
class Complete:
    metrics: AggregatedMetrics


@dataclass(frozen=True)
class Error:
    kind: str
    message: str
    detail: str = ""


@dataclass(frozen=True)
class Cancelled:
    pass


CaptureState = Union[Idle, CameraStarting, CameraReady, Capturing, Processing, Complete, Error, Cancelled]

NON_TERMINAL = (Idle, CameraStarting, CameraReady, Capturing, Processing)
CANCELLABLE = (Idle, CameraStarting, CameraReady, Capturing)
RESETTABLE = (Complete, Error, Cancelled)


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class CameraOpened:
    pass


@dataclass(frozen=True)
class CaptureRequested:
    pass


@dataclass(frozen=True)
class SampleAccepted:
    sample: SampleResult


@dataclass(frozen=True)
class SampleRejected:
    """Recoverable per-sample failure; the slot is retried."""
    notice: str


@dataclass(frozen=True)
class AggregationFinished:
    metrics: AggregatedMetrics


@dataclass(frozen=True)
class Failed:
    kind: str
    detail: str = ""


@dataclass(frozen=True)
class CancelRequested:
    pass


@dataclass(frozen=True)
class ResetRequested:
    pass


def transition(state: CaptureState, event) -> CaptureState:
    """
    Pure state transition.

    Capture requests that cannot run (already capturing, quota met, camera not
    ready) return ``state`` unchanged: they are rejected, never queued.
    Any other unsupported pair raises InvalidTransition.
    """
    if isinstance(event, CaptureRequested):
        if isinstance(state, CameraReady) and len(state.samples) < CAPTURE_COUNT:
            return Capturing(index=len(state.samples), samples=state.samples)
        return state

    if isinstance(event, Failed) and isinstance(state, NON_TERMINAL):
        return Error(kind=event.kind, message=ERROR_MESSAGES.get(event.kind, ERROR_MESSAGES[CAMERA_FAILURE]),
                     detail=event.detail)

    if isinstance(event, CancelRequested) and isinstance(state, CANCELLABLE):
        return Cancelled()

    if isinstance(event, ResetRequested) and isinstance(state, RESETTABLE):
        return Idle()

    if isinstance(state, Idle) and isinstance(event, StartRequested):
        return CameraStarting()

    if isinstance(state, CameraStarting) and isinstance(event, CameraOpened):
        return CameraReady()

    if isinstance(state, Capturing):
        if isinstance(event, SampleAccepted):
            samples = state.samples + (event.sample,)
            if len(samples) < CAPTURE_COUNT:
                return CameraReady(samples=samples)
            return Processing(samples=samples)
        if isinstance(event, SampleRejected):
            return CameraReady(samples=state.samples, notice=event.notice)

    if isinstance(state, Processing) and isinstance(event, AggregationFinished):
        if len(state.samples) != CAPTURE_COUNT:
            raise InvalidTransition(f"cannot complete with {len(state.samples)} samples")
        return Complete(metrics=event.metrics)

    raise InvalidTransition(f"{type(event).__name__} not accepted in {type(state).__name__}")


def progress_of(state: CaptureState) -> float:
    """Percent of the session done, as shown next to the capture button."""
    if isinstance(state, CameraReady):
        return len(state.samples) / CAPTURE_COUNT * 100.0
    if isinstance(state, Capturing):
        return (state.index + 1) / CAPTURE_COUNT * 100.0
    if isinstance(state, (Processing, Complete)):
        return 100.0
    return 0.0


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------
class CaptureOrchestrator:
    """Runs one capture session at a time against a video source."""

    def __init__(
        self,
        models: ModelLifecycleManager,
        source: VideoSource,
        settings: Settings,
        extractor: Callable = extract_features,
        on_complete: Optional[Callable[[AggregatedMetrics], None]] = None,
    ):
        self.s = settings
        self._models = models
        self._source = source
        self._extractor = extractor
        self._on_complete = on_complete
        self._resources = None
        self._session = 0
        self._camera_held = False
        self._settle_task: Optional[asyncio.Future] = None
        self.state: CaptureState = Idle()
        self.result: Optional[AggregatedMetrics] = None

    # ---- introspection ----
    @property
    def progress(self) -> float:
        return progress_of(self.state)

    @property
    def is_analyzing(self) -> bool:
        return isinstance(self.state, (Capturing, Processing))

    @property
    def samples(self) -> Tuple[SampleResult, ...]:
        return getattr(self.state, "samples", ())

    def _apply(self, event) -> CaptureState:
        prev = self.state
        self.state = transition(prev, event)
        logger.debug(f"[capture] {type(prev).__name__} --{type(event).__name__}--> {type(self.state).__name__}")
        return self.state

    def _is_current(self, session: int) -> bool:
        return session == self._session

    def _release_camera(self) -> None:
        # only release a device this orchestrator opened
        if self._camera_held:
            self._source.stop_capture()
            self._camera_held = False

    def _fail(self, kind: str, detail: str) -> CaptureState:
        self._release_camera()
        self._apply(Failed(kind, detail))
        logger.error(f"[capture] session failed kind={kind} detail={detail}")
        return self.state

    # ---- frame readiness ----
    # device calls can block, so they run in a worker thread
    async def _poll_frame(self, session: int):
        while not await asyncio.to_thread(self._source.frame_ready):
            if not self._is_current(session):
                return None
            await asyncio.sleep(self.s.FRAME_POLL_INTERVAL)
        return await asyncio.to_thread(self._source.grab_frame)

    async def _wait_for_frame(self, session: int):
        try:
            frame = await asyncio.wait_for(self._poll_frame(session), timeout=FRAME_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as e:
            raise FrameTimeout("stream timeout") from e
        if frame is None:
            raise FrameTimeout("frame ready but none could be read")
        return frame

    # ---- lifecycle ----
    async def start(self) -> CaptureState:
        """Load models (shared), open the camera and wait for its first frame."""
        if isinstance(self.state, RESETTABLE):
            raise InvalidTransition(f"call reset() before starting from {type(self.state).__name__}")
        if not isinstance(self.state, Idle):
            raise CameraBusy("a capture session is already active")
        self._session += 1
        session = self._session
        self.result = None
        self._apply(StartRequested())

        try:
            self._resources = await self._models.ensure_loaded()
        except ModelLoadError as e:
            if self._is_current(session):
                self._fail(MODEL_LOAD, str(e))
            return self.state
        except Exception as e:
            if self._is_current(session):
                logger.exception("[capture] unexpected model load failure")
                self._fail(MODEL_LOAD, str(e))
            return self.state
        if not self._is_current(session):
            return self.state

        try:
            await self._source.start_capture()
        except CameraAccessError as e:
            if self._is_current(session):
                self._apply(Failed(e.kind, str(e)))
                logger.error(f"[capture] camera start failed kind={e.kind}: {e}")
            return self.state
        self._camera_held = True
        if not self._is_current(session):
            # cancelled while the device was opening
            self._release_camera()
            return self.state

        try:
            await asyncio.wait_for(self._first_frame(), timeout=FRAME_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            if self._is_current(session):
                self._fail(CAMERA_FAILURE, "camera produced no frames")
            return self.state
        if not self._is_current(session):
            return self.state

        self._apply(CameraOpened())
        logger.info("[capture] camera ready")
        return self.state

    async def _first_frame(self) -> None:
        while not await asyncio.to_thread(self._source.frame_ready):
            await asyncio.sleep(self.s.FRAME_POLL_INTERVAL)

    async def capture(self) -> CaptureState:
        """
        Capture and score one sample.

        Rejected (state unchanged) while another capture runs or once three
        samples are in. Timeouts and missing faces return to CameraReady with
        a notice; the same slot is captured again next time.
        """
        nxt = transition(self.state, CaptureRequested())
        if nxt is self.state:
            logger.info(f"[capture] capture rejected in {type(self.state).__name__} "
                        f"(samples={len(self.samples)})")
            return self.state
        self.state = nxt
        session = self._session
        index = nxt.index
        logger.debug(f"[capture] capturing sample {index + 1}/{CAPTURE_COUNT}")

        try:
            frame = await self._wait_for_frame(session)
            sample = await asyncio.to_thread(self._extractor, frame, self._resources, self.s)
        except FrameTimeout as e:
            if self._is_current(session):
                logger.warning(f"[capture] sample {index + 1} timed out: {e}")
                self._apply(SampleRejected(NOTICE_TIMEOUT))
            return self.state
        except NoFaceDetected:
            if self._is_current(session):
                logger.info(f"[capture] no face in sample {index + 1}")
                self._apply(SampleRejected(NOTICE_NO_FACE))
            return self.state
        except Exception as e:
            if self._is_current(session):
                logger.exception(f"[capture] sample {index + 1} failed")
                kind = PROCESSING_FAILED if index == CAPTURE_COUNT - 1 else CAPTURE_FAILED
                self._fail(kind, str(e))
            return self.state

        if not self._is_current(session):
            logger.debug("[capture] discarding sample from a cancelled session")
            return self.state

        self._apply(SampleAccepted(sample))
        if isinstance(self.state, Processing):
            self._process(session)
        return self.state

    def _process(self, session: int) -> None:
        samples = self.state.samples
        try:
            metrics = aggregate_samples(samples)
        except Exception as e:
            logger.exception("[capture] aggregation failed")
            self._fail(PROCESSING_FAILED, str(e))
            return
        self._apply(AggregationFinished(metrics))
        self.result = metrics
        logger.info("[capture] session complete")
        self._settle_task = asyncio.ensure_future(self._settle(session))
        if self._on_complete is not None:
            try:
                self._on_complete(metrics)
            except Exception:
                logger.exception("[capture] on_complete callback failed")

    async def _settle(self, session: int) -> None:
        await asyncio.sleep(self.s.SETTLE_DELAY)
        if self._is_current(session) and isinstance(self.state, Complete):
            self._release_camera()
            self._session += 1
            self._apply(ResetRequested())

    async def wait_settled(self) -> None:
        """Wait for the post-completion reset (if one is pending)."""
        if self._settle_task is not None:
            await self._settle_task

    def cancel(self) -> bool:
        """Release the camera and return to Idle. Not possible once Processing began."""
        if not isinstance(self.state, CANCELLABLE):
            logger.info(f"[capture] cancel ignored in {type(self.state).__name__}")
            return False
        self._session += 1
        self._release_camera()
        self._apply(CancelRequested())
        self._apply(ResetRequested())
        logger.info("[capture] session cancelled")
        return True

    def reset(self) -> CaptureState:
        """Leave Error/Complete/Cancelled for a fresh Idle."""
        if isinstance(self.state, Idle):
            return self.state
        if not isinstance(self.state, RESETTABLE):
            raise InvalidTransition(f"cannot reset from {type(self.state).__name__}; cancel() first")
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = None
        self._session += 1
        self._release_camera()
        return self._apply(ResetRequested())

    def close(self) -> None:
        if isinstance(self.state, CANCELLABLE):
            self.cancel()
        elif not isinstance(self.state, (Idle, Processing)):
            self.reset()
        self._release_camera()
