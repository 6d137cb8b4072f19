"""
Opportunity Success Tracking Service

Records real-world outcomes for served opportunities, computes acceptance,
completion and accuracy metrics, and derives advisory recommendations that
can be applied to the versioned engine configuration as an explicit step.
"""

import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from lib.exceptions import ConflictError, NotFoundError, ValidationError
from models.domain import (
    ACCEPTED_STATUSES,
    ActualOutcome,
    LearningSignal,
    OpportunityFeedback,
    OpportunityPriority,
    OpportunityStatus,
    OpportunitySuggestion,
)
from repositories.base import UnitOfWork
from services.weights import EngineConfig

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.7
SUCCESS_IMPACT_RATIO = 0.8
MIN_LEARNING_SAMPLES = 3
QUICK_ACTION_DAYS = 3

FLOOR_STEP = 0.05
FLOOR_BOUNDS = (0.05, 0.95)
CATEGORY_PENALTY = 0.1
MULTIPLIER_BOUNDS = (0.1, 1.0)


@dataclass
class SuccessMetrics:
    """Rates are percentages (0-100); accuracies are fractions (0-1) or None without samples"""
    account_id: str
    window_days: int
    total_opportunities: int = 0
    expired_opportunities: int = 0
    acceptance_rate: float = 0.0
    completion_rate: float = 0.0
    average_time_to_action: float = 0.0
    median_time_to_action: float = 0.0
    average_time_to_completion: float = 0.0
    median_time_to_completion: float = 0.0
    success_rate_by_category: Dict[str, float] = field(default_factory=dict)
    success_rate_by_type: Dict[str, float] = field(default_factory=dict)
    success_rate_by_priority: Dict[str, float] = field(default_factory=dict)
    confidence_accuracy: Optional[float] = None
    impact_accuracy: Optional[float] = None
    user_engagement_score: float = 0.0


@dataclass
class Adjustment:
    """One advisory recommendation; ``parameter``/``delta`` are set when it can be applied"""
    kind: str
    message: str
    parameter: Optional[str] = None
    delta: Optional[float] = None
    category: Optional[str] = None


@dataclass
class LearningInsight:
    category: str
    type: str
    samples: int
    success_factors: List[str]
    failure_factors: List[str]
    optimal_confidence_range: Tuple[float, float]
    optimal_impact_range: Tuple[float, float]


def _is_success(opportunity: OpportunitySuggestion) -> bool:
    """Outcome-level success used for per-group success rates"""
    meta = opportunity.metadata
    return opportunity.status == OpportunityStatus.COMPLETED and (
        meta.get("actual_outcome") == ActualOutcome.SUCCESS.value or (meta.get("rating") or 0) >= 4
    )


def _days(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 86400


def _mean_median(values: List[float]) -> Tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return round(statistics.mean(values), 1), round(statistics.median(values), 1)


class SuccessTrackingService:
    """Service for outcome feedback, success metrics and recalibration advice"""

    def __init__(
        self,
        uow: UnitOfWork,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.uow = uow
        self.clock = clock
        self.learning_log: List[LearningSignal] = []

    def record_feedback(self, feedback: OpportunityFeedback) -> LearningSignal:
        """
        Record the outcome of an opportunity and close it as COMPLETED

        Args:
            feedback: User-reported outcome

        Returns:
            The learning signal derived from prediction vs outcome

        Raises:
            ValidationError: Out-of-range rating, impact or time invested
            NotFoundError: Unknown opportunity
            ConflictError: Feedback already recorded, or the opportunity is EXPIRED/REJECTED
        """
        self._validate(feedback)

        with self.uow.transaction():
            opportunity = self.uow.opportunities.get(feedback.opportunity_id)
            if opportunity is None:
                raise NotFoundError(f"Opportunity {feedback.opportunity_id} not found")
            if opportunity.status in (OpportunityStatus.EXPIRED, OpportunityStatus.REJECTED):
                raise ConflictError(
                    f"Opportunity {opportunity.id} is {opportunity.status.value}; feedback not accepted",
                    {"status": opportunity.status.value},
                )
            if self.uow.opportunities.get_feedback(opportunity.id) is not None:
                raise ConflictError(f"Feedback already recorded for opportunity {opportunity.id}")

            success = (
                feedback.rating >= 4
                and feedback.actual_outcome == ActualOutcome.SUCCESS
                and feedback.actual_impact >= SUCCESS_IMPACT_RATIO * opportunity.impact_score
            )

            now = self.clock()
            feedback.created_at = feedback.created_at or now
            self.uow.opportunities.save_feedback(feedback)

            timestamps = {"completed_at": opportunity.completed_at or now}
            if opportunity.acted_at is None:
                timestamps["acted_at"] = now
            self.uow.opportunities.update_status(
                opportunity.id,
                OpportunityStatus.COMPLETED,
                metadata={
                    "actual_outcome": feedback.actual_outcome.value,
                    "actual_impact": feedback.actual_impact,
                    "rating": feedback.rating,
                    "time_invested": feedback.time_invested,
                    "feedback": feedback.feedback,
                    "success": success,
                },
                expected_status=opportunity.status,
                timestamps=timestamps,
            )

        signal = LearningSignal(
            opportunity_id=opportunity.id,
            category=opportunity.category,
            type=opportunity.type,
            predicted_confidence=opportunity.confidence_score,
            predicted_impact=opportunity.impact_score,
            actual_outcome=feedback.actual_outcome,
            actual_impact=feedback.actual_impact,
            rating=feedback.rating,
            success=success,
        )
        self.learning_log.append(signal)
        logger.info(
            f"Recorded feedback for opportunity {opportunity.id}: "
            f"{feedback.actual_outcome.value}, rating {feedback.rating}, success={success}"
        )
        return signal

    @staticmethod
    def _validate(feedback: OpportunityFeedback) -> None:
        errors = {}
        if not isinstance(feedback.rating, int) or not 1 <= feedback.rating <= 5:
            errors["rating"] = "must be an integer from 1 to 5"
        if not isinstance(feedback.actual_outcome, ActualOutcome):
            errors["actual_outcome"] = f"must be one of {[o.value for o in ActualOutcome]}"
        if not 0 <= feedback.actual_impact <= 100:
            errors["actual_impact"] = "must be between 0 and 100"
        if feedback.time_invested < 0:
            errors["time_invested"] = "must not be negative"
        if errors:
            raise ValidationError("Invalid opportunity feedback", errors)

    def compute_metrics(
        self, account_id: str, window_days: int = 90, now: Optional[datetime] = None
    ) -> SuccessMetrics:
        """
        Success metrics over suggestions created in the last ``window_days``

        EXPIRED suggestions are retained in the totals but excluded from the
        acceptance-rate denominator and per-group success rates.
        """
        now = now or self.clock()
        opportunities = self.uow.opportunities.list(account_id, since=now - timedelta(days=window_days))
        metrics = SuccessMetrics(account_id=account_id, window_days=window_days)
        metrics.total_opportunities = len(opportunities)
        if not opportunities:
            return metrics

        live = [o for o in opportunities if o.status != OpportunityStatus.EXPIRED]
        metrics.expired_opportunities = len(opportunities) - len(live)
        accepted = [o for o in live if o.status in ACCEPTED_STATUSES]
        completed = [o for o in live if o.status == OpportunityStatus.COMPLETED]

        metrics.acceptance_rate = round(len(accepted) / len(live) * 100, 2) if live else 0.0
        metrics.completion_rate = round(len(completed) / len(accepted) * 100, 2) if accepted else 0.0

        to_action = [d for d in (_days(o.created_at, o.acted_at) for o in opportunities) if d is not None]
        to_completion = [d for d in (_days(o.acted_at, o.completed_at) for o in completed) if d is not None]
        metrics.average_time_to_action, metrics.median_time_to_action = _mean_median(to_action)
        metrics.average_time_to_completion, metrics.median_time_to_completion = _mean_median(to_completion)

        metrics.success_rate_by_category = self._success_rate_by(live, lambda o: o.category.value)
        metrics.success_rate_by_type = self._success_rate_by(live, lambda o: o.type.value)
        metrics.success_rate_by_priority = self._success_rate_by(live, lambda o: o.priority.value)

        metrics.confidence_accuracy = self._confidence_accuracy(completed)
        metrics.impact_accuracy = self._impact_accuracy(completed)
        metrics.user_engagement_score = self._engagement_score(opportunities)
        return metrics

    @staticmethod
    def _success_rate_by(opportunities, key) -> Dict[str, float]:
        groups: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        for o in opportunities:
            group = groups[key(o)]
            group[0] += 1
            group[1] += 1 if _is_success(o) else 0
        return {name: round(ok / total * 100, 1) for name, (total, ok) in groups.items()}

    @staticmethod
    def _confidence_accuracy(completed: List[OpportunitySuggestion]) -> Optional[float]:
        samples = [o for o in completed if "success" in o.metadata]
        if not samples:
            return None
        agree = sum(1 for o in samples if (o.confidence_score > HIGH_CONFIDENCE) == bool(o.metadata["success"]))
        return round(agree / len(samples), 3)

    @staticmethod
    def _impact_accuracy(completed: List[OpportunitySuggestion]) -> Optional[float]:
        samples = [o for o in completed if o.metadata.get("actual_impact") is not None and o.impact_score > 0]
        if not samples:
            return None
        error = sum(abs(o.impact_score - o.metadata["actual_impact"]) / o.impact_score for o in samples)
        return round(1 - error / len(samples), 3)

    @staticmethod
    def _engagement_score(opportunities: List[OpportunitySuggestion]) -> float:
        total = len(opportunities)
        viewed = sum(1 for o in opportunities if o.status == OpportunityStatus.VIEWED or o.status in ACCEPTED_STATUSES)
        accepted = sum(1 for o in opportunities if o.status in ACCEPTED_STATUSES)
        acted = sum(1 for o in opportunities if o.acted_at is not None)
        quick = sum(
            1 for o in opportunities
            if (_days(o.created_at, o.acted_at) is not None and _days(o.created_at, o.acted_at) <= QUICK_ACTION_DAYS)
        )
        score = (viewed * 0.2 + accepted * 0.3 + acted * 0.3 + quick * 0.2) / total * 100
        return round(score, 1)

    def recommend_adjustments(
        self, metrics: SuccessMetrics, current_config: Optional[EngineConfig] = None
    ) -> List[Adjustment]:
        """
        Rule-based, advisory recommendations

        Nothing is applied here; see ``apply_adjustments``.
        """
        config = current_config or EngineConfig()
        recommendations: List[Adjustment] = []
        if metrics.total_opportunities == 0:
            return recommendations

        floor = config.generation.opportunity_confidence_floor
        if metrics.acceptance_rate > 80:
            recommendations.append(Adjustment(
                "raise_confidence_threshold",
                f"Raise confidence threshold: {metrics.acceptance_rate:.0f}% acceptance leaves room to be more selective "
                f"(floor {floor:.2f} -> {min(FLOOR_BOUNDS[1], floor + FLOOR_STEP):.2f})",
                parameter="generation.opportunity_confidence_floor",
                delta=FLOOR_STEP,
            ))
        elif metrics.acceptance_rate < 30:
            recommendations.append(Adjustment(
                "lower_confidence_threshold",
                f"Lower confidence threshold: only {metrics.acceptance_rate:.0f}% of suggestions are accepted "
                f"(floor {floor:.2f} -> {max(FLOOR_BOUNDS[0], floor - FLOOR_STEP):.2f})",
                parameter="generation.opportunity_confidence_floor",
                delta=-FLOOR_STEP,
            ))

        if metrics.acceptance_rate > 0 and metrics.completion_rate < 50:
            recommendations.append(Adjustment(
                "improve_actionability",
                "Focus on actionability: many accepted opportunities are not being completed",
            ))

        if metrics.average_time_to_action > 7:
            recommendations.append(Adjustment(
                "improve_urgency",
                "Improve urgency indicators: users are taking too long to act on suggestions",
            ))

        rates = metrics.success_rate_by_category
        if len(rates) > 1:
            best_category, best_rate = max(rates.items(), key=lambda item: (item[1], item[0]))
            for category, rate in sorted(rates.items()):
                if best_rate - rate > 20:
                    recommendations.append(Adjustment(
                        "category_underperforming",
                        f"Improve {category} opportunity detection: {rate:.0f}% success vs "
                        f"{best_rate:.0f}% for {best_category}",
                        parameter="category_multipliers",
                        delta=-CATEGORY_PENALTY,
                        category=category,
                    ))

        if metrics.confidence_accuracy is not None and metrics.confidence_accuracy < 0.7:
            recommendations.append(Adjustment(
                "recalibrate_confidence",
                "Recalibrate confidence scoring: high-confidence predictions do not match outcomes often enough",
            ))

        if metrics.user_engagement_score < 50:
            recommendations.append(Adjustment(
                "improve_engagement",
                "Improve user experience: add context so users understand each opportunity's value",
            ))

        return recommendations

    @staticmethod
    def apply_adjustments(config: EngineConfig, adjustments: List[Adjustment]) -> EngineConfig:
        """
        Apply parametric adjustments, returning a new config version

        The input config is left untouched. Advisory-only adjustments are
        ignored; if none apply, the original config is returned.
        """
        floor = config.generation.opportunity_confidence_floor
        multipliers = dict(config.category_multipliers)
        changed = False

        for adjustment in adjustments:
            if adjustment.delta is None:
                continue
            if adjustment.parameter == "generation.opportunity_confidence_floor":
                floor = max(FLOOR_BOUNDS[0], min(FLOOR_BOUNDS[1], floor + adjustment.delta))
                changed = True
            elif adjustment.parameter == "category_multipliers" and adjustment.category:
                current = multipliers.get(adjustment.category, 1.0)
                multipliers[adjustment.category] = round(
                    max(MULTIPLIER_BOUNDS[0], min(MULTIPLIER_BOUNDS[1], current + adjustment.delta)), 4
                )
                changed = True

        if not changed:
            return config

        generation = config.generation.model_copy(update={"opportunity_confidence_floor": round(floor, 4)})
        new_config = config.next_version(generation=generation, category_multipliers=multipliers)
        logger.info(f"Engine config advanced to version {new_config.version}")
        return new_config

    def learning_insights(self, account_id: str) -> List[LearningInsight]:
        """Per category/type insights from completed opportunities with enough samples"""
        completed = [
            o for o in self.uow.opportunities.list(account_id)
            if o.status == OpportunityStatus.COMPLETED
        ]
        groups: Dict[Tuple[str, str], List[OpportunitySuggestion]] = defaultdict(list)
        for o in completed:
            groups[(o.category.value, o.type.value)].append(o)

        insights = []
        for (category, type_), members in sorted(groups.items()):
            if len(members) < MIN_LEARNING_SAMPLES:
                continue
            successful = [o for o in members if _is_success(o)]
            failed = [
                o for o in members
                if o.metadata.get("actual_outcome") == ActualOutcome.NO_RESULT.value
                or (o.metadata.get("rating") is not None and o.metadata["rating"] < 3)
            ]
            confidences = [o.confidence_score for o in successful]
            impacts = [o.impact_score for o in successful]
            insights.append(LearningInsight(
                category=category,
                type=type_,
                samples=len(members),
                success_factors=self._success_factors(successful),
                failure_factors=self._failure_factors(failed),
                optimal_confidence_range=(min(confidences), max(confidences)) if confidences else (0.0, 1.0),
                optimal_impact_range=(min(impacts), max(impacts)) if impacts else (0.0, 100.0),
            ))
        return insights

    @staticmethod
    def _success_factors(opportunities: List[OpportunitySuggestion]) -> List[str]:
        if not opportunities:
            return []
        factors = []
        if statistics.mean(o.confidence_score for o in opportunities) > 0.8:
            factors.append("High confidence threshold")
        urgent = sum(1 for o in opportunities if o.priority == OpportunityPriority.URGENT)
        if urgent / len(opportunities) > 0.5:
            factors.append("Urgent priority")
        return factors

    @staticmethod
    def _failure_factors(opportunities: List[OpportunitySuggestion]) -> List[str]:
        if not opportunities:
            return []
        factors = []
        if statistics.mean(o.confidence_score for o in opportunities) < 0.4:
            factors.append("Low confidence threshold")
        low = sum(1 for o in opportunities if o.priority == OpportunityPriority.LOW)
        if low / len(opportunities) > 0.5:
            factors.append("Low priority")
        return factors

    def learning_signals(self, account_id: str) -> List[Dict[str, Any]]:
        """Learning signals reconstructed from stored feedback metadata"""
        signals = []
        for o in self.uow.opportunities.list(account_id):
            if "success" not in o.metadata:
                continue
            signals.append({
                "opportunity_id": o.id,
                "category": o.category.value,
                "type": o.type.value,
                "predicted_confidence": o.confidence_score,
                "predicted_impact": o.impact_score,
                "actual_outcome": o.metadata.get("actual_outcome"),
                "actual_impact": o.metadata.get("actual_impact"),
                "rating": o.metadata.get("rating"),
                "success": o.metadata["success"],
            })
        return signals
