"""
Error taxonomy for model loading, capture, feature extraction and scoring.
"""
from __future__ import annotations


class SkinAnalysisError(Exception):
    """Base class for every error raised by the engine."""


# ---- model resources ----
class ModelLoadError(SkinAnalysisError):
    """Detection resources are unavailable. Retryable."""
    stage = "load"

    def __init__(self, model_name: str, message: str):
        super().__init__(f"{model_name}: {message}")
        self.model_name = model_name


class ModelFetchError(ModelLoadError):
    """The model artifact could not be fetched."""
    stage = "fetch"


class ModelInitError(ModelLoadError):
    """The artifact was fetched but the runtime could not build a detector from it."""
    stage = "init"


# ---- camera ----
class CameraAccessError(SkinAnalysisError):
    """Camera permission or device problem. Needs user intervention."""
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    FAILURE = "failure"
    BUSY = "busy"

    def __init__(self, message: str, kind: str = FAILURE):
        super().__init__(message)
        self.kind = kind


class CameraBusy(CameraAccessError):
    """The camera is already held by another session."""

    def __init__(self, message: str = "camera is already in use by another session"):
        super().__init__(message, kind=CameraAccessError.BUSY)


# ---- per-sample ----
class NoFaceDetected(SkinAnalysisError):
    """No face in the captured frame. Retry the capture."""


class FrameTimeout(SkinAnalysisError):
    """The video source did not report a ready frame in time. Retry the capture."""


class MalformedFrame(SkinAnalysisError):
    """The frame has no usable pixels."""


class ComputeBackendUnavailable(SkinAnalysisError):
    """Extraction was called without loaded (or after disposed) resources."""


# ---- internal invariants ----
class AggregationPreconditionError(SkinAnalysisError):
    """Aggregation was invoked with the wrong number of samples."""


class InvalidTransition(SkinAnalysisError):
    """An event is not accepted in the current capture state."""


# ---- scoring ----
class InvalidQuestionnaire(SkinAnalysisError, ValueError):
    """Questionnaire input failed validation; nothing was scored."""

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


# ---- composition ----
class CaptureSessionError(SkinAnalysisError):
    """A headless capture session ended without aggregated metrics."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
