import pytest
import numpy as np

from skinrisk.config import Settings
from skinrisk.model_manager import ComputeBackend, DetectionResources
from skinrisk.models import FaceRegion, SampleResult


class DummyDetector:
    """Stands in for a cascade: returns the configured boxes for every call."""
    def __init__(self, boxes=None):
        self.boxes = boxes or []
        self.calls = 0
    def detectMultiScale(self, img, **kw):
        self.calls += 1
        return list(self.boxes)


@pytest.fixture
def settings():
    return Settings(SETTLE_DELAY=0.0, FRAME_POLL_INTERVAL=0.01)


@pytest.fixture
def make_resources():
    def _make(face_boxes=((20, 20, 80, 80),), eye_boxes=()):
        backend = ComputeBackend("cpu")
        backend.ready = True
        return DetectionResources(DummyDetector(list(face_boxes)), DummyDetector(list(eye_boxes)), backend)
    return _make


@pytest.fixture
def make_sample():
    def _make(value=50.0, **overrides):
        fields = {name: value for name in (
            "hydration", "elasticity", "texture", "pores",
            "wrinkles", "spots", "uniformity", "brightness")}
        fields.update(overrides)
        return SampleResult(region=FaceRegion(x=10, y=10, w=50, h=50), **fields)
    return _make


@pytest.fixture
def gray_frame():
    return np.full((120, 160, 3), 128, dtype=np.uint8)


@pytest.fixture
def questionnaire():
    return {
        "age": 40,
        "skin_type": "Sensitive",
        "melanation": "Dark",
        "concerns": ["acne"],
    }
