"""
Loading, sharing and disposal of the face detection resources.

Two artifacts are needed: a face localiser and a facial-feature (eye)
detector. Both are OpenCV cascade classifiers fetched as bytes from a
``ModelSource`` and built once; every capture session reuses the same
``DetectionResources`` read-only until ``dispose()``.
"""
from __future__ import annotations
import asyncio
import logging
import os
import tempfile
from typing import Optional, Protocol

import cv2

from skinrisk.buffers import BufferTracker
from skinrisk.config import Settings
from skinrisk.errors import ModelFetchError, ModelInitError, ModelLoadError

logger = logging.getLogger(__name__)


class ModelSource(Protocol):
    def fetch_model(self, name: str) -> bytes: ...


class CascadeModelSource:
    """Reads cascade XML files from a directory (OpenCV's bundled set by default)."""

    def __init__(self, model_dir: str | None = None):
        self.model_dir = model_dir or cv2.data.haarcascades

    def fetch_model(self, name: str) -> bytes:
        path = os.path.join(self.model_dir, name)
        if not os.path.exists(path):
            raise ModelFetchError(name, f"artifact not found at {path}")
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise ModelFetchError(name, f"could not read {path}: {e}") from e


def build_cascade(name: str, data: bytes) -> cv2.CascadeClassifier:
    """Build a cascade classifier from raw XML bytes."""
    if not data:
        raise ModelInitError(name, "artifact is empty")
    # CascadeClassifier only loads from a path
    with tempfile.NamedTemporaryFile(delete=False, suffix=".xml") as tmp:
        tmp.write(data)
        tmp_path = tmp.name
    try:
        clf = cv2.CascadeClassifier(tmp_path)
    except Exception as e:
        # cv2.error, or SystemError on some OpenCV builds
        raise ModelInitError(name, f"runtime rejected artifact: {e}") from e
    finally:
        try:
            os.unlink(tmp_path)
        except OSError:
            logger.warning(f"[models] failed to cleanup tmp file: {tmp_path}")
    if clf.empty():
        raise ModelInitError(name, "runtime could not build a detector from artifact")
    return clf


class ComputeBackend:
    """Image-processing runtime state plus the buffer tracker extraction uses."""

    def __init__(self, device: str = "cpu"):
        self.device = device
        self.buffers = BufferTracker()
        self.ready = False

    def initialize(self) -> None:
        use_ocl = self.device == "opencl" and cv2.ocl.haveOpenCL()
        cv2.ocl.setUseOpenCL(use_ocl)
        if self.device == "opencl" and not use_ocl:
            logger.warning("[models] OpenCL requested but not available; using cpu")
        self.ready = True

    def release(self) -> None:
        self.buffers.release_all()
        if cv2.ocl.useOpenCL():
            cv2.ocl.finish()
        self.ready = False


class DetectionResources:
    """Opaque handle to the loaded detectors. Read-only once built."""

    def __init__(self, face_detector, feature_detector, backend: ComputeBackend):
        self.face_detector = face_detector
        self.feature_detector = feature_detector
        self.backend = backend
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.face_detector = None
        self.feature_detector = None
        self.backend.release()
        self.released = True


class ModelLifecycleManager:
    """
    Owns the detection resources for the hosting application.

    ``ensure_loaded`` is idempotent and deduplicates concurrent loads;
    a failed load is forgotten so the next call starts over.
    """

    def __init__(self, settings: Settings, source: Optional[ModelSource] = None):
        self.s = settings
        self.source = source or CascadeModelSource(settings.MODEL_DIR)
        self._resources: Optional[DetectionResources] = None
        self._load_task: Optional[asyncio.Future] = None

    @property
    def loaded(self) -> bool:
        return self._resources is not None

    async def ensure_loaded(self) -> DetectionResources:
        if self._resources is not None:
            return self._resources
        if self._load_task is None:
            logger.debug("[models] starting load")
            self._load_task = asyncio.ensure_future(self._load())
            self._load_task.add_done_callback(self._on_load_done)
        else:
            logger.debug("[models] load already in flight; awaiting it")
        task = self._load_task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                # dispose() cut the load short; the caller itself was not cancelled
                raise ModelLoadError("detection-resources", "disposed while loading") from None
            raise

    def _on_load_done(self, task: asyncio.Future) -> None:
        if task is not self._load_task:
            return
        # success leaves _resources set; failure leaves nothing cached
        self._load_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[models] load failed: {task.exception()}")

    async def _fetch(self, name: str) -> bytes:
        try:
            return await asyncio.to_thread(self.source.fetch_model, name)
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelFetchError(name, f"fetch failed: {e}") from e

    async def _load(self) -> DetectionResources:
        face_name, feature_name = self.s.FACE_MODEL, self.s.FEATURE_MODEL
        face_bytes, feature_bytes = await asyncio.gather(
            self._fetch(face_name), self._fetch(feature_name)
        )
        logger.debug(f"[models] fetched {face_name} ({len(face_bytes)} B), {feature_name} ({len(feature_bytes)} B)")

        face_detector = build_cascade(face_name, face_bytes)
        feature_detector = build_cascade(feature_name, feature_bytes)
        backend = ComputeBackend(self.s.DEVICE)
        try:
            backend.initialize()
        except cv2.error as e:
            raise ModelInitError("compute-backend", str(e)) from e

        self._resources = DetectionResources(face_detector, feature_detector, backend)
        logger.info(f"[models] detection resources ready device={backend.device}")
        return self._resources

    def dispose(self) -> None:
        """Release both detectors and any tracked buffers. No-op if never loaded."""
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None
        if self._resources is None:
            return
        self._resources.release()
        self._resources = None
        logger.info("[models] detection resources disposed")
