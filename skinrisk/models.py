"""
Pydantic data models shared by capture, extraction, aggregation and scoring.
"""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Optional, Literal, Tuple

METRIC_NAMES: Tuple[str, ...] = (
    "hydration",
    "elasticity",
    "texture",
    "pores",
    "wrinkles",
    "spots",
    "uniformity",
    "brightness",
)

SkinType = Literal["Oily", "Dry", "Combination", "Sensitive", "Normal"]
Melanation = Literal["None", "Light", "Medium", "Dark", "Very Dark", "Mixed"]
SunExposure = Literal["minimal", "moderate", "heavy"]
WaterIntake = Literal["<1L", "1-2L", ">2L"]
FactorCategory = Literal["skin", "product", "lifestyle", "environmental"]
Severity = Literal["low", "medium", "high", "critical"]
RiskLevel = Literal["Low", "Moderate", "High"]


class FaceRegion(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    w: int
    h: int
    # eye centres in frame coordinates, when the feature detector finds them
    landmarks: Tuple[Tuple[int, int], ...] = ()


class SkinMetrics(BaseModel):
    hydration: float = Field(ge=0.0, le=100.0)
    elasticity: float = Field(ge=0.0, le=100.0)
    texture: float = Field(ge=0.0, le=100.0)
    pores: float = Field(ge=0.0, le=100.0)
    wrinkles: float = Field(ge=0.0, le=100.0)
    spots: float = Field(ge=0.0, le=100.0)
    uniformity: float = Field(ge=0.0, le=100.0)
    brightness: float = Field(ge=0.0, le=100.0)

    def as_dict(self) -> Dict[str, float]:
        return {name: float(getattr(self, name)) for name in METRIC_NAMES}


class SampleResult(SkinMetrics):
    """One accepted capture: eight scores plus the face box they came from."""
    model_config = ConfigDict(frozen=True)

    region: FaceRegion


class AggregatedMetrics(SkinMetrics):
    model_config = ConfigDict(frozen=True)

    sample_count: int = 3


class QuestionnaireInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    age: int = Field(ge=1, le=120)
    gender: str = "Unspecified"
    skin_type: SkinType
    melanation: Melanation
    concerns: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    underlying_conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    smoking: bool = False
    sun_exposure: SunExposure = "moderate"
    water_intake: WaterIntake = "1-2L"
    treatments_wanted: List[str] = Field(default_factory=list)
    pregnancy_or_breastfeeding: bool = False

    @field_validator(
        "concerns", "allergies", "underlying_conditions", "medications", "treatments_wanted"
    )
    @classmethod
    def _drop_blank(cls, v: List[str]) -> List[str]:
        return [s.strip() for s in v if s and s.strip()]


class RiskFactor(BaseModel):
    category: FactorCategory
    severity: Severity
    description: str
    recommendation: Optional[str] = None


class Assessment(BaseModel):
    risk_score: int = Field(ge=0, le=100)
    raw_score: float = Field(ge=0.0, le=100.0)
    risk_level: RiskLevel
    melanation: str
    recommendation: str
    social_media_text: str
    disclaimer: str
    factors: List[RiskFactor] = Field(default_factory=list)
    metrics: Optional[AggregatedMetrics] = None
    metric_trends: Optional[Dict[str, float]] = None
