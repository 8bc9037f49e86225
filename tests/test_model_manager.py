import asyncio
import os
import time

import cv2
import pytest

import skinrisk.model_manager as mm
from skinrisk.errors import ModelFetchError, ModelInitError, ModelLoadError
from skinrisk.model_manager import CascadeModelSource, ModelLifecycleManager, build_cascade


class CountingSource:
    """Serves the bundled cascades, counting fetches per artifact."""
    def __init__(self, fail_times=0):
        self.inner = CascadeModelSource()
        self.calls = {}
        self.fail_times = fail_times
    def fetch_model(self, name):
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("network down")
        return self.inner.fetch_model(name)


class GarbageSource:
    def fetch_model(self, name):
        return b"<not-a-cascade/>"


class SlowSource(CountingSource):
    def fetch_model(self, name):
        time.sleep(0.2)
        return super().fetch_model(name)


def test_concurrent_ensure_loaded_shares_one_load(settings):
    src = CountingSource()
    mgr = ModelLifecycleManager(settings, source=src)

    async def run():
        return await asyncio.gather(*(mgr.ensure_loaded() for _ in range(5)))

    results = asyncio.run(run())
    assert all(r is results[0] for r in results)
    assert src.calls == {settings.FACE_MODEL: 1, settings.FEATURE_MODEL: 1}
    assert mgr.loaded
    # already loaded: no new fetch
    assert asyncio.run(mgr.ensure_loaded()) is results[0]
    assert src.calls[settings.FACE_MODEL] == 1
    mgr.dispose()


def test_failed_load_is_retried(settings):
    src = CountingSource(fail_times=1)
    mgr = ModelLifecycleManager(settings, source=src)
    with pytest.raises(ModelFetchError) as ei:
        asyncio.run(mgr.ensure_loaded())
    assert ei.value.stage == "fetch"
    assert not mgr.loaded

    res = asyncio.run(mgr.ensure_loaded())
    assert res.backend.ready
    assert mgr.loaded
    mgr.dispose()


def test_missing_artifact_is_fetch_error(settings, tmp_path):
    mgr = ModelLifecycleManager(settings, source=CascadeModelSource(str(tmp_path)))
    with pytest.raises(ModelFetchError):
        asyncio.run(mgr.ensure_loaded())


def test_garbage_artifact_is_init_error(settings):
    mgr = ModelLifecycleManager(settings, source=GarbageSource())
    with pytest.raises(ModelInitError) as ei:
        asyncio.run(mgr.ensure_loaded())
    assert isinstance(ei.value, ModelLoadError)
    assert ei.value.stage == "init"
    assert not mgr.loaded


def test_build_cascade_cleans_tmp_file(monkeypatch):
    seen = []
    real = cv2.CascadeClassifier
    def spy(path):
        seen.append(path)
        return real(path)
    monkeypatch.setattr(mm.cv2, "CascadeClassifier", spy)
    with pytest.raises(ModelInitError):
        build_cascade("x.xml", b"garbage")
    with pytest.raises(ModelInitError):
        build_cascade("empty.xml", b"")
    assert len(seen) == 1
    assert not os.path.exists(seen[0])


def test_dispose(settings):
    mgr = ModelLifecycleManager(settings)
    mgr.dispose()  # never loaded: no-op
    res = asyncio.run(mgr.ensure_loaded())
    assert res.face_detector is not None
    mgr.dispose()
    assert res.released
    assert res.face_detector is None and res.feature_detector is None
    assert not res.backend.ready
    assert not mgr.loaded
    mgr.dispose()


def test_classifier_runtime_exception_is_init_error(monkeypatch):
    seen = []
    def reject(path):
        seen.append(path)
        raise SystemError("returned a result with an exception set")
    monkeypatch.setattr(mm.cv2, "CascadeClassifier", reject)
    with pytest.raises(ModelInitError) as ei:
        build_cascade("face.xml", b"<opencv_storage/>")
    assert ei.value.stage == "init"
    assert not os.path.exists(seen[0])


def test_dispose_during_load(settings):
    mgr = ModelLifecycleManager(settings, source=SlowSource())

    async def run():
        task = asyncio.ensure_future(mgr.ensure_loaded())
        await asyncio.sleep(0.05)
        mgr.dispose()
        with pytest.raises(ModelLoadError):
            await task

    asyncio.run(run())
    assert not mgr.loaded
    mgr.source = CountingSource()
    assert asyncio.run(mgr.ensure_loaded()).backend.ready
    mgr.dispose()
