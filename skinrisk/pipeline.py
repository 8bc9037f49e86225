# skinrisk/pipeline.py
from __future__ import annotations
from typing import Awaitable, Callable, Mapping, Optional, Union
import logging

from skinrisk.aggregation import compare_metrics
from skinrisk.capture import CaptureOrchestrator, CaptureState, Complete, Error, Idle
from skinrisk.errors import CaptureSessionError
from skinrisk.models import AggregatedMetrics, Assessment, QuestionnaireInput
from skinrisk.repository import AssessmentRepository
from skinrisk.risk import score_assessment

logger = logging.getLogger(__name__)

MAX_CAPTURE_ATTEMPTS = 10

Trigger = Callable[[CaptureState], Awaitable[bool]]


def assess_questionnaire(data: Union[QuestionnaireInput, Mapping],
                         metrics: Union[AggregatedMetrics, Mapping, None] = None,
                         *,
                         user_id: Optional[str] = None,
                         repository: Optional[AssessmentRepository] = None) -> Assessment:
    """
    Score a questionnaire and, when a user and repository are given, store it as
    that user's latest assessment. Metric trends are filled in when both the
    previous and the new assessment carry skin metrics.
    """
    logger.debug(f"[pipeline] assess_questionnaire start user_id={user_id} with_metrics={metrics is not None}")
    assessment = score_assessment(data, metrics)
    if user_id is None or repository is None:
        return assessment

    previous = repository.get_latest(user_id)
    if previous is not None and previous.metrics is not None and assessment.metrics is not None:
        trends = compare_metrics(previous.metrics, assessment.metrics)
        assessment = assessment.model_copy(update={"metric_trends": trends})
        logger.debug(f"[pipeline] metric trends vs previous: {trends}")

    stored = repository.upsert_latest(user_id, assessment)
    logger.debug(f"[pipeline] stored assessment user_id={user_id} score={stored.risk_score}")
    return stored


def _raise_for_error(orchestrator: CaptureOrchestrator, state: CaptureState) -> None:
    if isinstance(state, Error):
        orchestrator.reset()
        raise CaptureSessionError(state.kind, state.message)


async def run_capture_session(orchestrator: CaptureOrchestrator,
                              trigger: Optional[Trigger] = None,
                              max_attempts: int = MAX_CAPTURE_ATTEMPTS) -> AggregatedMetrics:
    """
    Drive one capture session without a UI: start the camera, capture until
    three samples are in, and return the aggregated metrics.

    ``trigger`` is awaited before every capture with the current state; it
    returns False to cancel. Without a trigger the captures run back to back.
    Slots rejected for a timeout or a missing face are retried, up to
    ``max_attempts`` captures in total.

    Raises:
        CaptureSessionError: the session errored, was cancelled or ran out of attempts.
            An errored orchestrator is reset before raising.
    """
    state = await orchestrator.start()
    _raise_for_error(orchestrator, state)

    attempts = 0
    while not isinstance(orchestrator.state, Complete):
        if attempts >= max_attempts:
            orchestrator.cancel()
            raise CaptureSessionError("attempts", f"no complete session after {max_attempts} captures")
        if trigger is not None and not await trigger(orchestrator.state):
            orchestrator.cancel()
        if isinstance(orchestrator.state, Idle):
            raise CaptureSessionError("cancelled", "capture session was cancelled")

        state = await orchestrator.capture()
        attempts += 1
        _raise_for_error(orchestrator, state)
        notice = getattr(state, "notice", None)
        if notice:
            logger.info(f"[pipeline] attempt {attempts}: {notice}")

    metrics = orchestrator.result
    await orchestrator.wait_settled()
    logger.debug(f"[pipeline] capture session finished after {attempts} attempts")
    return metrics
