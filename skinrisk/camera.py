"""
Live video sources.

The orchestrator only talks to the ``VideoSource`` protocol; ``OpenCVVideoSource``
backs it with ``cv2.VideoCapture``. A source is exclusive: starting it while
another session holds it fails fast with ``CameraBusy``.
"""
from __future__ import annotations
import asyncio
import logging
import os
import sys
from typing import Optional, Protocol

import cv2
import numpy as np

from skinrisk.config import Settings
from skinrisk.errors import CameraAccessError, CameraBusy

logger = logging.getLogger(__name__)


class VideoSource(Protocol):
    async def start_capture(self) -> None: ...
    def stop_capture(self) -> None: ...
    # blocking device calls; the orchestrator runs these in a worker thread
    def frame_ready(self) -> bool: ...
    def grab_frame(self) -> Optional[np.ndarray]: ...


def classify_open_failure(camera_index: int) -> CameraAccessError:
    """Best-effort split of an open failure into no-device / permission / generic."""
    if sys.platform.startswith("linux"):
        dev = f"/dev/video{camera_index}"
        if not os.path.exists(dev):
            return CameraAccessError(f"No camera found at {dev}", CameraAccessError.NO_DEVICE)
        if not os.access(dev, os.R_OK | os.W_OK):
            return CameraAccessError(f"Permission denied for {dev}", CameraAccessError.PERMISSION_DENIED)
    return CameraAccessError(f"Could not open camera index {camera_index}", CameraAccessError.FAILURE)


class OpenCVVideoSource:
    """Webcam via OpenCV. ``frame_ready`` grabs; ``grab_frame`` decodes the grabbed frame."""

    def __init__(self, settings: Settings, camera_index: Optional[int] = None):
        self.s = settings
        self.camera_index = settings.CAMERA_INDEX if camera_index is None else camera_index
        self._cap: Optional[cv2.VideoCapture] = None
        self._grabbed = False
        self._opening = False

    @property
    def active(self) -> bool:
        return self._cap is not None

    def _open(self) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise classify_open_failure(self.camera_index)
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.s.CAMERA_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.s.CAMERA_HEIGHT)
        return cap

    async def start_capture(self) -> None:
        if self._cap is not None or self._opening:
            raise CameraBusy()
        logger.debug(f"[camera] opening index={self.camera_index}")
        self._opening = True
        try:
            cap = await asyncio.to_thread(self._open)
        except cv2.error as e:
            raise CameraAccessError(f"Camera error: {e}", CameraAccessError.FAILURE) from e
        finally:
            self._opening = False
        self._cap = cap
        self._grabbed = False

    def stop_capture(self) -> None:
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        self._grabbed = False
        logger.debug(f"[camera] released index={self.camera_index}")

    def frame_ready(self) -> bool:
        if self._cap is None:
            return False
        if not self._grabbed:
            self._grabbed = bool(self._cap.grab())
        return self._grabbed

    def grab_frame(self) -> Optional[np.ndarray]:
        if self._cap is None:
            return None
        if not self._grabbed and not self._cap.grab():
            return None
        self._grabbed = False
        ok, frame = self._cap.retrieve()
        return frame if ok else None
