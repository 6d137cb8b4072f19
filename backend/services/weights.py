"""
Versioned weight and threshold configuration.

Every number the scoring algorithms combine with lives here so the
recalibrator's recommendations can be applied without code changes. Configs
are immutable; applying an adjustment yields a new ``version``.
"""

from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator

from config import settings
from models.domain import SignalType


class _WeightSet(BaseModel):
    """A group of weights that must sum to 1.0"""

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_weights_sum(self):
        total = sum(self.model_dump().values())
        if abs(total - 1.0) > 0.001:
            raise ValueError(f"All weights must sum to 1.0, got {total}")
        return self

    def as_dict(self) -> Dict[str, float]:
        return self.model_dump()


class DiscoveryWeights(_WeightSet):
    """Contribution of each evidence signal to candidate confidence"""

    same_company: float = Field(0.30, ge=0.0, le=1.0, description="Weight for a shared employer")
    same_email_domain: float = Field(0.20, ge=0.0, le=1.0, description="Weight for a shared corporate email domain")
    same_location: float = Field(0.15, ge=0.0, le=1.0, description="Weight for geographic proximity")
    role_similarity: float = Field(0.15, ge=0.0, le=1.0, description="Weight for same seniority band")
    mutual_connections: float = Field(0.20, ge=0.0, le=1.0, description="Weight for shared neighbors")

    def weight_for(self, signal_type: SignalType) -> float:
        return getattr(self, signal_type.value)


class PriorityWeights(_WeightSet):
    network_position: float = Field(0.20, ge=0.0, le=1.0)
    relationship_strength: float = Field(0.25, ge=0.0, le=1.0)
    professional_relevance: float = Field(0.15, ge=0.0, le=1.0)
    mutual_connections: float = Field(0.10, ge=0.0, le=1.0)
    engagement_pattern: float = Field(0.25, ge=0.0, le=1.0)
    opportunity_indicators: float = Field(0.05, ge=0.0, le=1.0)


class OpportunityWeights(_WeightSet):
    opportunity_indicators: float = Field(0.35, ge=0.0, le=1.0)
    network_position: float = Field(0.20, ge=0.0, le=1.0)
    relationship_strength: float = Field(0.15, ge=0.0, le=1.0)
    engagement_pattern: float = Field(0.15, ge=0.0, le=1.0)
    professional_relevance: float = Field(0.15, ge=0.0, le=1.0)


class StrategicWeights(_WeightSet):
    network_position: float = Field(0.35, ge=0.0, le=1.0)
    mutual_connections: float = Field(0.30, ge=0.0, le=1.0)
    professional_relevance: float = Field(0.25, ge=0.0, le=1.0)
    opportunity_indicators: float = Field(0.10, ge=0.0, le=1.0)


class ScoringWeights(BaseModel):
    """Per-score linear combinations of the six contact factors"""

    model_config = ConfigDict(frozen=True)

    priority: PriorityWeights = Field(default_factory=PriorityWeights)
    opportunity: OpportunityWeights = Field(default_factory=OpportunityWeights)
    strategic: StrategicWeights = Field(default_factory=StrategicWeights)


class GenerationThresholds(BaseModel):
    """Pattern thresholds for the opportunity generator"""

    model_config = ConfigDict(frozen=True)

    reconnection_stale_days: int = Field(default_factory=lambda: settings.RECONNECTION_STALE_DAYS, ge=1)
    reconnection_max_days: int = Field(730, ge=1)
    reconnection_min_priority: float = Field(60.0, ge=0.0, le=100.0)
    introduction_min_strength: float = Field(
        default_factory=lambda: settings.INTRODUCTION_MIN_STRENGTH, ge=0.0, le=1.0
    )
    introduction_min_opportunity: float = Field(60.0, ge=0.0, le=100.0)
    cluster_min_size: int = Field(default_factory=lambda: settings.CLUSTER_MIN_SIZE, ge=2)
    cluster_min_strategic_value: float = Field(50.0, ge=0.0, le=100.0)
    opportunity_confidence_floor: float = Field(0.1, ge=0.0, le=1.0, description="Suggestions below this are dropped")


class EngineConfig(BaseModel):
    """Complete, versioned tunable state of the engine"""

    model_config = ConfigDict(frozen=True)

    version: int = Field(1, ge=1)
    discovery_confidence_floor: float = Field(
        default_factory=lambda: settings.DISCOVERY_CONFIDENCE_FLOOR, ge=0.0, le=1.0
    )
    discovery: DiscoveryWeights = Field(default_factory=DiscoveryWeights)
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    generation: GenerationThresholds = Field(default_factory=GenerationThresholds)
    category_multipliers: Dict[str, float] = Field(
        default_factory=dict, description="Per-category confidence multipliers set by recalibration"
    )

    def next_version(self, **changes) -> "EngineConfig":
        """Copy with ``changes`` applied and the version bumped."""
        return self.model_copy(update={**changes, "version": self.version + 1})
