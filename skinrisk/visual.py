
"""Live preview overlay.

- draw_capture_overlay: face box, capture progress label and an optional notice
  (timeout / no face) drawn onto a copy of the preview frame
"""
from __future__ import annotations
import cv2
import numpy as np
from typing import Optional, Tuple

from skinrisk.models import FaceRegion

NOTICE_COLOR = (0, 0, 255)


def draw_capture_overlay(frame: np.ndarray,
                         region: Optional[FaceRegion] = None,
                         label: str = "",
                         notice: Optional[str] = None,
                         color: Tuple[int, int, int] = (0, 255, 0)) -> np.ndarray:
    """Draw the face box, a progress label and a notice line on a frame.

    Args:
        frame: BGR image
        region: last detected face, if any
        label: short status such as "2/3 captured"
        notice: message shown in red at the bottom (e.g. a retry prompt)
        color: BGR color for the box and label

    Returns:
        Annotated copy; the input frame is left untouched
    """
    out = frame.copy()
    h, w = out.shape[:2]

    if region is not None:
        # clamp to image bounds
        x = max(0, min(region.x, w-1)); y = max(0, min(region.y, h-1))
        fw = max(0, min(region.w, w-x)); fh = max(0, min(region.h, h-y))
        cv2.rectangle(out, (x, y), (x+fw, y+fh), color, 2)
        for ex, ey in region.landmarks:
            if 0 <= ex < w and 0 <= ey < h:
                cv2.circle(out, (int(ex), int(ey)), 3, color, -1)

    if label:
        cv2.putText(out, label, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2, cv2.LINE_AA)
    if notice:
        cv2.putText(out, notice, (10, max(20, h-15)), cv2.FONT_HERSHEY_SIMPLEX, 0.5, NOTICE_COLOR, 1, cv2.LINE_AA)

    return out
