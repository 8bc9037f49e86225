import asyncio

import pytest

from skinrisk.aggregation import aggregate_samples
from skinrisk.capture import CaptureOrchestrator, Idle
from skinrisk.errors import CameraAccessError, CaptureSessionError, InvalidQuestionnaire, NoFaceDetected
from skinrisk.pipeline import assess_questionnaire, run_capture_session
from skinrisk.repository import InMemoryAssessmentRepository

from dummies import DummyModels, DummySource, ScriptedExtractor


def test_assess_questionnaire_without_repository(questionnaire):
    a = assess_questionnaire(questionnaire)
    assert a.risk_score == 80
    assert a.metric_trends is None


def test_repository_keeps_latest_only(questionnaire, make_sample):
    repo = InMemoryAssessmentRepository()
    first = assess_questionnaire(questionnaire, user_id="u1", repository=repo)
    assert repo.get_latest("u1") == first
    second = assess_questionnaire({**questionnaire, "smoking": True}, user_id="u1", repository=repo)
    assert len(repo) == 1
    assert repo.get_latest("u1").raw_score == second.raw_score < first.raw_score
    assert repo.get_latest("nobody") is None


def test_metric_trends_against_previous(questionnaire, make_sample):
    repo = InMemoryAssessmentRepository()
    before = aggregate_samples([make_sample(50.0)] * 3)
    after = aggregate_samples([make_sample(60.0, spots=45.0)] * 3)
    assess_questionnaire(questionnaire, before, user_id="u1", repository=repo)
    a = assess_questionnaire(questionnaire, after, user_id="u1", repository=repo)
    assert a.metric_trends["hydration"] == 10.0
    assert a.metric_trends["spots"] == -5.0
    assert repo.get_latest("u1").metric_trends == a.metric_trends

    # no metrics this time: no trends
    b = assess_questionnaire(questionnaire, user_id="u1", repository=repo)
    assert b.metric_trends is None


def test_invalid_input_is_not_stored():
    repo = InMemoryAssessmentRepository()
    with pytest.raises(InvalidQuestionnaire):
        assess_questionnaire({"age": 30}, user_id="u1", repository=repo)
    assert len(repo) == 0


def test_repository_returns_copies(questionnaire):
    repo = InMemoryAssessmentRepository()
    stored = assess_questionnaire(questionnaire, user_id="u1", repository=repo)
    fetched = repo.get_latest("u1")
    fetched.factors.clear()
    assert repo.get_latest("u1").factors == stored.factors
    with pytest.raises(ValueError):
        repo.upsert_latest("", stored)


def test_run_capture_session_retries_and_returns_metrics(settings, make_sample):
    ext = ScriptedExtractor([NoFaceDetected("x"), make_sample(10.0), make_sample(20.0), make_sample(30.0)])
    src = DummySource()
    orch = CaptureOrchestrator(DummyModels(), src, settings, extractor=ext)
    seen = []

    async def trigger(state):
        seen.append(type(state).__name__)
        return True

    metrics = asyncio.run(run_capture_session(orch, trigger))
    assert metrics.hydration == pytest.approx(20.0)
    assert len(seen) == 4
    assert orch.state == Idle()
    assert not src.active


def test_run_capture_session_cancelled_by_trigger(settings):
    src = DummySource()
    orch = CaptureOrchestrator(DummyModels(), src, settings, extractor=ScriptedExtractor([]))

    async def trigger(state):
        return False

    with pytest.raises(CaptureSessionError) as ei:
        asyncio.run(run_capture_session(orch, trigger))
    assert ei.value.kind == "cancelled"
    assert not src.active


def test_run_capture_session_error(settings):
    src = DummySource(start_error=CameraAccessError("denied", CameraAccessError.PERMISSION_DENIED))
    orch = CaptureOrchestrator(DummyModels(), src, settings, extractor=ScriptedExtractor([]))
    with pytest.raises(CaptureSessionError) as ei:
        asyncio.run(run_capture_session(orch))
    assert ei.value.kind == CameraAccessError.PERMISSION_DENIED
    assert orch.state == Idle()


def test_run_capture_session_gives_up(settings):
    ext = ScriptedExtractor([NoFaceDetected("x")] * 3)
    src = DummySource()
    orch = CaptureOrchestrator(DummyModels(), src, settings, extractor=ext)
    with pytest.raises(CaptureSessionError) as ei:
        asyncio.run(run_capture_session(orch, max_attempts=3))
    assert ei.value.kind == "attempts"
    assert not src.active
