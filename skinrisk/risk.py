"""
Beauty risk scoring.

A fixed, ordered set of rules turns a questionnaire (and optionally the
averaged skin metrics) into risk points and itemised factors. Points are
normalised against MAX_POINTS into a 0..100 score where higher means lower
risk, then bucketed into a tier. No I/O, no randomness.
"""
from __future__ import annotations
import logging
from typing import List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from skinrisk.errors import InvalidQuestionnaire
from skinrisk.models import AggregatedMetrics, Assessment, QuestionnaireInput, RiskFactor

logger = logging.getLogger(__name__)

MAX_POINTS = 50
LOW_RISK_MIN_SCORE = 70.0
MODERATE_RISK_MIN_SCORE = 40.0

SKIN_TYPE_POINTS = {"Oily": 2, "Dry": 1, "Sensitive": 3, "Combination": 2, "Normal": 1}
MELANATION_POINTS = {"None": 2, "Light": 1, "Medium": 2, "Dark": 3, "Very Dark": 4, "Mixed": 3}
PIGMENT_SENSITIVE_MELANATIONS = ("Medium", "Dark", "Very Dark", "Mixed")

HIGH_RISK_CONDITION_KEYWORDS = ("immune", "diabetes")
CONTRAINDICATED_MEDICATIONS = ("isotretinoin",)
HIGH_RISK_TREATMENTS = ("deep chemical peel", "ablative laser")
MEDIUM_RISK_TREATMENTS = ("microneedling", "medium-depth peel")

TIER_PREAMBLE = {
    "Low": "Overall low risk. Proceed with usual precautions and standard consultation.",
    "Moderate": (
        "Moderate risk. Consult a certified skin specialist or dermatologist "
        "before proceeding with invasive treatments."
    ),
    "High": (
        "High risk. Strongly recommend clearance from a certified skin specialist "
        "or dermatologist before any procedure."
    ),
}

MELANATION_REFINEMENT = {
    "Low": "Given your skin color type, still consider a patch test if doing chemical peels or lasers.",
    "Moderate": (
        "For your skin color type, start with light chemical peels or low-intensity treatments, "
        "possibly at more frequent intervals instead of one aggressive session. This reduces the "
        "chance of hypo-/hyperpigmentation. Patch testing is strongly advised."
    ),
    "High": (
        "With deeper/mixed skin tones, you have an elevated risk of post-inflammatory "
        "hyperpigmentation or scarring. Seek personalized supervision and opt for mild approaches first."
    ),
}

DISCLAIMER = (
    "Disclaimer: This assessment is for informational purposes only. Always consult a certified "
    "skin specialist or dermatologist for personalized guidance before undergoing any aesthetic treatments."
)

# (metric, threshold, advice) -- informational, no risk points
METRIC_ADVICE: Tuple[Tuple[str, float, str], ...] = (
    ("hydration", 70.0, "Focus on hydration with hyaluronic acid products."),
    ("texture", 75.0, "Consider adding retinol for texture improvement."),
    ("spots", 80.0, "Use vitamin C serum for pigmentation."),
)


def parse_questionnaire(data: Union[QuestionnaireInput, Mapping]) -> QuestionnaireInput:
    """Validate raw questionnaire answers; raise InvalidQuestionnaire on any problem."""
    if isinstance(data, QuestionnaireInput):
        return data
    if not isinstance(data, Mapping):
        raise InvalidQuestionnaire(f"questionnaire must be a mapping, got {type(data).__name__}")
    try:
        return QuestionnaireInput.model_validate(dict(data))
    except ValidationError as e:
        raise InvalidQuestionnaire(f"invalid questionnaire: {e.error_count()} error(s)", e.errors()) from e


def _coerce_metrics(metrics) -> Optional[AggregatedMetrics]:
    if metrics is None or isinstance(metrics, AggregatedMetrics):
        return metrics
    try:
        return AggregatedMetrics.model_validate(dict(metrics))
    except (TypeError, ValueError) as e:
        raise InvalidQuestionnaire(f"invalid skin metrics: {e}") from e


def normalize_score(risk_points: int) -> float:
    """100 - points/MAX_POINTS*100, clamped to [0, 100]."""
    score = 100.0 - (risk_points * 100.0) / MAX_POINTS
    return max(0.0, min(100.0, score))


def classify_tier(score: float) -> str:
    if score >= LOW_RISK_MIN_SCORE:
        return "Low"
    if score >= MODERATE_RISK_MIN_SCORE:
        return "Moderate"
    return "High"


def _tiered(points: int) -> str:
    return "high" if points >= 3 else "medium" if points >= 2 else "low"


def _age_points(age: int) -> int:
    if age < 25:
        return 1
    if age < 35:
        return 2
    if age < 45:
        return 3
    return 4


def _matching(items: List[str], keywords: Tuple[str, ...]) -> List[str]:
    return [item for item in items if any(k in item.lower() for k in keywords)]


def collect_risk_factors(q: QuestionnaireInput) -> Tuple[int, List[RiskFactor]]:
    """Walk the questionnaire rules in order; return (risk points, factors)."""
    points = 0
    factors: List[RiskFactor] = []

    # Age
    age_pts = _age_points(q.age)
    points += age_pts
    factors.append(RiskFactor(
        category="lifestyle",
        severity="low" if age_pts <= 2 else "medium",
        description=f"Age-related considerations for {q.age} years old",
    ))

    # Skin type
    skin_pts = SKIN_TYPE_POINTS[q.skin_type]
    points += skin_pts
    factors.append(RiskFactor(
        category="skin",
        severity=_tiered(skin_pts),
        description=f"{q.skin_type} skin type considerations",
    ))

    # Melanation
    mel_pts = MELANATION_POINTS[q.melanation]
    points += mel_pts
    factors.append(RiskFactor(
        category="skin",
        severity=_tiered(mel_pts),
        description=f"{q.melanation} skin tone considerations",
        recommendation=(
            "Consider patch testing for chemical treatments and careful monitoring "
            "for hyperpigmentation risk."
            if q.melanation in PIGMENT_SENSITIVE_MELANATIONS else None
        ),
    ))

    # Concerns
    if q.concerns:
        points += len(q.concerns)
        factors.append(RiskFactor(
            category="skin",
            severity=_tiered(len(q.concerns)),
            description=f"Skin concerns: {', '.join(q.concerns)}",
        ))

    # Allergies
    if q.allergies:
        points += 2 * len(q.allergies)
        factors.append(RiskFactor(
            category="skin",
            severity="high",
            description=f"Known allergies: {', '.join(q.allergies)}",
            recommendation="Careful patch testing required before any new treatment.",
        ))

    # Underlying conditions
    if q.underlying_conditions:
        high_risk = bool(_matching(q.underlying_conditions, HIGH_RISK_CONDITION_KEYWORDS))
        points += 3 if high_risk else len(q.underlying_conditions)
        factors.append(RiskFactor(
            category="lifestyle",
            severity="critical" if high_risk else "high",
            description=f"Medical conditions: {', '.join(q.underlying_conditions)}",
            recommendation="Medical clearance required before treatments.",
        ))

    # Medications
    flagged = _matching(q.medications, CONTRAINDICATED_MEDICATIONS)
    if flagged:
        points += 3
        factors.append(RiskFactor(
            category="product",
            severity="critical",
            description=f"Current use of {', '.join(flagged)}",
            recommendation="Many treatments are contraindicated while on isotretinoin.",
        ))

    # Lifestyle
    if q.smoking:
        points += 2
        factors.append(RiskFactor(
            category="lifestyle",
            severity="medium",
            description="Active smoker",
            recommendation="Smoking can affect healing and treatment results.",
        ))

    if q.sun_exposure == "heavy":
        points += 2
        factors.append(RiskFactor(
            category="environmental",
            severity="high",
            description="High sun exposure",
            recommendation="Sun protection crucial before and after treatments.",
        ))

    # Treatments (high and medium are independent)
    high_tx = _matching(q.treatments_wanted, HIGH_RISK_TREATMENTS)
    if high_tx:
        points += 4
        factors.append(RiskFactor(
            category="product",
            severity="critical",
            description=f"High-risk treatments desired: {', '.join(high_tx)}",
            recommendation="Professional consultation required.",
        ))
    medium_tx = _matching(q.treatments_wanted, MEDIUM_RISK_TREATMENTS)
    if medium_tx:
        points += 3
        factors.append(RiskFactor(
            category="product",
            severity="high",
            description=f"Medium-risk treatments desired: {', '.join(medium_tx)}",
            recommendation="Patch testing and gradual approach recommended.",
        ))

    # Pregnancy / breastfeeding
    if q.pregnancy_or_breastfeeding:
        points += 5
        factors.append(RiskFactor(
            category="lifestyle",
            severity="critical",
            description="Pregnancy or breastfeeding",
            recommendation="Many treatments are contraindicated during pregnancy/breastfeeding.",
        ))

    return points, factors


def metric_factors(metrics: AggregatedMetrics) -> List[RiskFactor]:
    out: List[RiskFactor] = []
    for name, threshold, advice in METRIC_ADVICE:
        value = float(getattr(metrics, name))
        if value < threshold:
            out.append(RiskFactor(
                category="skin",
                severity="low",
                description=f"Measured {name} {value:.1f} is below {threshold:.0f}",
                recommendation=advice,
            ))
    return out


def build_recommendation(tier: str, melanation: str) -> str:
    parts = [TIER_PREAMBLE[tier]]
    if melanation in PIGMENT_SENSITIVE_MELANATIONS:
        parts.append(MELANATION_REFINEMENT[tier])
    return " ".join(parts)


def social_media_text(score: float, tier: str, melanation: str) -> str:
    return (
        f"My #BeautyRisk score is {int(round(score))} ({tier}) with a {melanation} skin tone! "
        "#PatchTest #HealthySkin #SkinToneCare Always consult a professional before starting "
        "new skincare treatments."
    )


def score_assessment(questionnaire: Union[QuestionnaireInput, Mapping],
                     metrics: Union[AggregatedMetrics, Mapping, None] = None) -> Assessment:
    """
    Score a questionnaire, optionally enriched with averaged skin metrics.

    Raises:
        InvalidQuestionnaire: input failed validation (nothing is scored).
    """
    q = parse_questionnaire(questionnaire)
    agg = _coerce_metrics(metrics)

    points, factors = collect_risk_factors(q)
    if agg is not None:
        factors.extend(metric_factors(agg))

    score = normalize_score(points)
    tier = classify_tier(score)
    logger.debug(f"[risk] points={points} score={score:.1f} tier={tier} factors={len(factors)}")

    return Assessment(
        risk_score=int(round(score)),
        raw_score=score,
        risk_level=tier,
        melanation=q.melanation,
        recommendation=build_recommendation(tier, q.melanation),
        social_media_text=social_media_text(score, tier, q.melanation),
        disclaimer=DISCLAIMER,
        factors=factors,
        metrics=agg,
    )
