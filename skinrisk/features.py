"""
Per-sample skin feature extraction.

One frame in, one ``SampleResult`` out:
  1. localise the face with the face cascade (largest box wins)
  2. crop to it and look for the eyes with the feature cascade
  3. compute eight scores from classical image statistics, each clamped to [0, 100]

All scale constants are fixed so identical frames give identical scores.
Intermediate arrays live in a ``BufferScope`` and are released on every exit path.
"""
from __future__ import annotations
import logging
import math
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from skinrisk.buffers import BufferScope
from skinrisk.config import Settings
from skinrisk.errors import ComputeBackendUnavailable, MalformedFrame, NoFaceDetected
from skinrisk.model_manager import DetectionResources
from skinrisk.models import FaceRegion, SampleResult

logger = logging.getLogger(__name__)

# Per-metric gain: score = 100 * (1 - min(1, stat * GAIN))
TEXTURE_GAIN = 1000.0
ELASTICITY_GAIN = 12.0
PORES_GAIN = 8.0
WRINKLES_GAIN = 15.0
SPOTS_GAIN = 60.0
UNIFORMITY_GAIN = 1.0

# Mean-driven scores (score = clamp(mean * SCALE))
BRIGHTNESS_SCALE = 160.0
HYDRATION_SCALE = 150.0

SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float32) / 8.0
SOBEL_Y = np.ascontiguousarray(SOBEL_X.T)
GRAD_X = np.array([[-1, 0, 1], [-1, 0, 1], [-1, 0, 1]], dtype=np.float32) / 6.0
GRAD_Y = np.ascontiguousarray(GRAD_X.T)
LUMA_RGB = np.array([0.2989, 0.5870, 0.1140], dtype=np.float32)

DETECT_WIDTH = 480             # Downscale width for face detection
BORDER = cv2.BORDER_REPLICATE


def clamp_score(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return float(min(max(value, 0.0), 100.0))


def inverted_score(stat: float, gain: float) -> float:
    """100 for a flat crop, falling to 0 once stat * gain reaches 1."""
    return clamp_score(100.0 * (1.0 - min(1.0, stat * gain)))


def validate_frame(frame) -> np.ndarray:
    if frame is None:
        raise MalformedFrame("frame is None")
    frame = np.asarray(frame)
    if frame.ndim != 3 or frame.shape[2] != 3:
        raise MalformedFrame(f"expected HxWx3 BGR frame, got shape {frame.shape}")
    if frame.shape[0] == 0 or frame.shape[1] == 0:
        raise MalformedFrame(f"zero-dimension frame {frame.shape}")
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    return frame


def _require_backend(resources: Optional[DetectionResources]) -> DetectionResources:
    if resources is None or resources.released or not resources.backend.ready:
        raise ComputeBackendUnavailable("detection resources are not loaded; call ensure_loaded() first")
    return resources


# -----------------------------------------------------------------------------
# Face localisation
# -----------------------------------------------------------------------------
def _resize_for_detect(img: np.ndarray, target_w: int = DETECT_WIDTH) -> Tuple[np.ndarray, float]:
    H, W = img.shape[:2]
    if W <= target_w:
        return img, 1.0
    scale = target_w / float(W)
    small = cv2.resize(img, (target_w, max(1, int(H * scale))), interpolation=cv2.INTER_AREA)
    return small, scale


def _clamp_box(x: int, y: int, w: int, h: int, W: int, H: int) -> Optional[Tuple[int, int, int, int]]:
    if w <= 0 or h <= 0:
        return None
    x = max(0, min(x, W - 1)); y = max(0, min(y, H - 1))
    w = max(1, min(w, W - x)); h = max(1, min(h, H - y))
    return x, y, w, h


def detect_face(frame: np.ndarray, resources: DetectionResources, settings: Settings,
                scope: BufferScope) -> FaceRegion:
    """Return the largest face in the frame or raise NoFaceDetected."""
    H, W = frame.shape[:2]
    small, scale = _resize_for_detect(frame)
    gray_small = scope.track(cv2.cvtColor(small, cv2.COLOR_BGR2GRAY))
    min_side = max(8, int(settings.FACE_MIN_SIZE * scale))

    faces = resources.face_detector.detectMultiScale(
        gray_small,
        scaleFactor=settings.FACE_SCALE_FACTOR,
        minNeighbors=settings.FACE_MIN_NEIGHBORS,
        minSize=(min_side, min_side),
    )
    faces = list(faces) if len(faces) else []
    logger.debug(f"[features] faces_detected={len(faces)}")
    if not faces:
        raise NoFaceDetected("no face detected in frame")

    x, y, w, h = max(faces, key=lambda b: int(b[2]) * int(b[3]))
    box = _clamp_box(int(x / scale), int(y / scale), int(w / scale), int(h / scale), W, H)
    if box is None:
        raise NoFaceDetected("face box collapsed after clamping")
    x, y, w, h = box

    # eyes are searched in the upper half of the face only
    face_gray = scope.track(cv2.cvtColor(frame[y:y + h, x:x + w], cv2.COLOR_BGR2GRAY))
    upper = face_gray[: max(1, h // 2), :]
    eyes = resources.feature_detector.detectMultiScale(upper, scaleFactor=1.1, minNeighbors=5)
    landmarks = []
    for (ex, ey, ew, eh) in (list(eyes) if len(eyes) else [])[:2]:
        landmarks.append((int(x + ex + ew // 2), int(y + ey + eh // 2)))
    landmarks.sort()

    return FaceRegion(x=x, y=y, w=w, h=h, landmarks=tuple(landmarks))


def crop_region(frame: np.ndarray, region: FaceRegion) -> np.ndarray:
    chip = frame[region.y:region.y + region.h, region.x:region.x + region.w]
    if chip.size == 0:
        raise MalformedFrame(f"empty crop for region {region}")
    return chip


# -----------------------------------------------------------------------------
# Metrics (inputs are float32 images normalised to [0, 1])
# -----------------------------------------------------------------------------
def score_texture(gray: np.ndarray, scope: BufferScope) -> float:
    smoothed = scope.track(cv2.blur(gray, (3, 3), borderType=BORDER))
    local_mean = scope.track(cv2.blur(smoothed, (3, 3), borderType=BORDER))
    local_sq = scope.track(cv2.blur(smoothed * smoothed, (3, 3), borderType=BORDER))
    local_var = scope.track(np.maximum(local_sq - local_mean * local_mean, 0.0))
    return inverted_score(float(local_var.mean()), TEXTURE_GAIN)


def score_elasticity(gray: np.ndarray, scope: BufferScope) -> float:
    gx = scope.track(cv2.filter2D(gray, -1, SOBEL_X, borderType=BORDER))
    gy = scope.track(cv2.filter2D(gray, -1, SOBEL_Y, borderType=BORDER))
    magnitude = scope.track(cv2.magnitude(gx, gy))
    return inverted_score(float(magnitude.mean()), ELASTICITY_GAIN)


def score_pores(gray: np.ndarray, scope: BufferScope) -> float:
    blurred = scope.track(cv2.blur(gray, (5, 5), borderType=BORDER))
    high_freq = scope.track(cv2.absdiff(gray, blurred))
    return inverted_score(float(high_freq.mean()), PORES_GAIN)


def score_wrinkles(gray: np.ndarray, scope: BufferScope) -> float:
    gx = scope.track(np.abs(cv2.filter2D(gray, -1, GRAD_X, borderType=BORDER)))
    gy = scope.track(np.abs(cv2.filter2D(gray, -1, GRAD_Y, borderType=BORDER)))
    directional = scope.track(np.maximum(gx, gy))
    return inverted_score(float(directional.mean()), WRINKLES_GAIN)


def score_spots(rgb: np.ndarray, scope: BufferScope) -> float:
    channel_mean = rgb.mean(axis=(0, 1))
    deviation = scope.track(rgb - channel_mean)
    variance = float(np.mean(scope.track(deviation * deviation)))
    return inverted_score(variance, SPOTS_GAIN)


def score_uniformity(rgb: np.ndarray, scope: BufferScope) -> float:
    luma = scope.track(rgb @ LUMA_RGB)
    return inverted_score(float(luma.std()), UNIFORMITY_GAIN)


def score_brightness(rgb: np.ndarray) -> float:
    return clamp_score(float(rgb.mean()) * BRIGHTNESS_SCALE)


def score_hydration(gray: np.ndarray) -> float:
    # grayscale mean; brightness uses the RGB mean
    return clamp_score(float(gray.mean()) * HYDRATION_SCALE)


def compute_metrics(face_bgr: np.ndarray, scope: BufferScope) -> Dict[str, float]:
    """Eight clamped scores for a BGR face crop."""
    rgb = scope.track(cv2.cvtColor(face_bgr, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0)
    gray = scope.track(cv2.cvtColor(face_bgr, cv2.COLOR_BGR2GRAY).astype(np.float32) / 255.0)
    return {
        "hydration": score_hydration(gray),
        "elasticity": score_elasticity(gray, scope),
        "texture": score_texture(gray, scope),
        "pores": score_pores(gray, scope),
        "wrinkles": score_wrinkles(gray, scope),
        "spots": score_spots(rgb, scope),
        "uniformity": score_uniformity(rgb, scope),
        "brightness": score_brightness(rgb),
    }


def extract_features(frame, resources: Optional[DetectionResources],
                     settings: Optional[Settings] = None) -> SampleResult:
    """
    Localise the face in ``frame`` (BGR uint8) and score it.

    Raises:
        ComputeBackendUnavailable: resources missing or disposed.
        MalformedFrame: frame is not a non-empty HxWx3 image.
        NoFaceDetected: the face cascade found nothing.
    """
    resources = _require_backend(resources)
    settings = settings or Settings()
    frame = validate_frame(frame)

    with resources.backend.buffers.scope() as scope:
        region = detect_face(frame, resources, settings, scope)
        chip = crop_region(frame, region)
        metrics = compute_metrics(chip, scope)

    logger.debug(f"[features] region=({region.x},{region.y},{region.w},{region.h}) metrics={metrics}")
    return SampleResult(region=region, **metrics)
