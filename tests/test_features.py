import numpy as np
import pytest

import skinrisk.features as features
from skinrisk.buffers import BufferTracker
from skinrisk.errors import ComputeBackendUnavailable, MalformedFrame, NoFaceDetected
from skinrisk.features import clamp_score, compute_metrics, extract_features, validate_frame
from skinrisk.models import METRIC_NAMES


def test_compute_metrics_on_uniform_gray():
    tracker = BufferTracker()
    crop = np.full((64, 64, 3), 128, dtype=np.uint8)
    with tracker.scope() as scope:
        m = compute_metrics(crop, scope)
    assert m["hydration"] == pytest.approx(128 / 255 * 150, abs=0.01)
    assert m["brightness"] == pytest.approx(128 / 255 * 160, abs=0.01)
    for name in ("texture", "elasticity", "pores", "wrinkles", "spots", "uniformity"):
        assert m[name] == pytest.approx(100.0, abs=1e-3)
    assert tracker.live_buffers == 0 and tracker.live_bytes == 0


def test_compute_metrics_bounds_on_noise():
    rng = np.random.default_rng(7)
    tracker = BufferTracker()
    for _ in range(5):
        crop = rng.integers(0, 256, size=(48, 40, 3), dtype=np.uint8)
        with tracker.scope() as scope:
            m = compute_metrics(crop, scope)
        assert set(m) == set(METRIC_NAMES)
        assert all(0.0 <= v <= 100.0 for v in m.values())


def test_textured_crop_scores_lower_than_flat():
    tracker = BufferTracker()
    flat = np.full((64, 64, 3), 128, dtype=np.uint8)
    stripes = flat.copy()
    stripes[(np.arange(64) // 4) % 2 == 0] = 20
    with tracker.scope() as scope:
        a = compute_metrics(flat, scope)
        b = compute_metrics(stripes, scope)
    for name in ("texture", "elasticity", "pores", "wrinkles", "spots", "uniformity"):
        assert b[name] < a[name], name


def test_scores_fall_as_noise_rises():
    rng = np.random.default_rng(3)
    tracker = BufferTracker()
    scores = []
    for sigma in (5.0, 15.0, 30.0):
        noise = rng.normal(0.0, sigma, size=(64, 64, 1))
        crop = np.clip(128.0 + noise, 0, 255).astype(np.uint8).repeat(3, axis=2)
        with tracker.scope() as scope:
            scores.append(compute_metrics(crop, scope))
    for name in ("texture", "elasticity", "pores", "wrinkles", "spots"):
        low, mid, high = (s[name] for s in scores)
        assert 100.0 > low > mid > high, name
        assert 0.0 < mid < 100.0, name
    assert tracker.live_buffers == 0


def test_clamp_score():
    assert clamp_score(-5.0) == 0.0
    assert clamp_score(140.0) == 100.0
    assert clamp_score(float("nan")) == 0.0
    assert clamp_score(42.5) == 42.5


def test_extract_features_with_dummy_detectors(make_resources, gray_frame, settings):
    res = make_resources(face_boxes=[(10, 10, 30, 30), (40, 20, 80, 80)], eye_boxes=[(50, 10, 10, 10), (10, 10, 10, 10)])
    sample = extract_features(gray_frame, res, settings)
    # largest box wins
    assert (sample.region.x, sample.region.y, sample.region.w, sample.region.h) == (40, 20, 80, 80)
    assert sample.region.landmarks == ((55, 35), (95, 35))
    assert sample.hydration == pytest.approx(75.29, abs=0.01)
    assert res.backend.buffers.live_buffers == 0


def test_extract_features_is_deterministic(make_resources, settings):
    rng = np.random.default_rng(3)
    frame = rng.integers(0, 256, size=(120, 160, 3), dtype=np.uint8)
    res = make_resources()
    assert extract_features(frame, res, settings) == extract_features(frame.copy(), res, settings)


def test_box_is_clamped_to_frame(make_resources, gray_frame, settings):
    res = make_resources(face_boxes=[(140, 100, 80, 80)])
    sample = extract_features(gray_frame, res, settings)
    assert sample.region.x + sample.region.w <= 160
    assert sample.region.y + sample.region.h <= 120


def test_no_face_releases_buffers(make_resources, gray_frame, settings):
    res = make_resources(face_boxes=[])
    with pytest.raises(NoFaceDetected):
        extract_features(gray_frame, res, settings)
    assert res.backend.buffers.live_buffers == 0
    assert res.backend.buffers.live_bytes == 0


def test_failure_mid_metrics_releases_buffers(make_resources, gray_frame, settings, monkeypatch):
    def boom(rgb, scope):
        scope.track(np.zeros(1000, dtype=np.float32))
        raise RuntimeError("kernel failed")
    monkeypatch.setattr(features, "score_spots", boom)
    res = make_resources()
    with pytest.raises(RuntimeError):
        extract_features(gray_frame, res, settings)
    assert res.backend.buffers.live_buffers == 0


@pytest.mark.parametrize("frame", [
    None,
    np.zeros((10, 10), dtype=np.uint8),
    np.zeros((0, 10, 3), dtype=np.uint8),
    np.zeros((10, 10, 4), dtype=np.uint8),
])
def test_malformed_frames(make_resources, settings, frame):
    with pytest.raises(MalformedFrame):
        extract_features(frame, make_resources(), settings)


def test_validate_frame_converts_dtype():
    out = validate_frame(np.full((4, 4, 3), 300.0))
    assert out.dtype == np.uint8
    assert out.max() == 255


def test_backend_unavailable(make_resources, gray_frame, settings):
    with pytest.raises(ComputeBackendUnavailable):
        extract_features(gray_frame, None, settings)
    res = make_resources()
    res.release()
    with pytest.raises(ComputeBackendUnavailable):
        extract_features(gray_frame, res, settings)


def test_black_frame_with_real_cascades(settings):
    import asyncio
    from skinrisk.model_manager import ModelLifecycleManager
    mgr = ModelLifecycleManager(settings)
    res = asyncio.run(mgr.ensure_loaded())
    try:
        with pytest.raises(NoFaceDetected):
            extract_features(np.zeros((480, 640, 3), dtype=np.uint8), res, settings)
    finally:
        mgr.dispose()
