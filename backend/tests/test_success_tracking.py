"""Tests for SuccessTrackingService."""

from datetime import timedelta

import pytest

from lib.exceptions import ConflictError, NotFoundError, ValidationError
from models.domain import (
    ActualOutcome,
    OpportunityCategory,
    OpportunityFeedback,
    OpportunityStatus,
)
from services.success_tracking import Adjustment, SuccessMetrics, SuccessTrackingService
from services.weights import EngineConfig, GenerationThresholds

ACCOUNT = "acct-1"


@pytest.fixture
def service(uow, clock):
    return SuccessTrackingService(uow, clock)


def feedback_for(opportunity_id, **overrides):
    data = {
        "opportunity_id": opportunity_id,
        "rating": 5,
        "actual_outcome": ActualOutcome.SUCCESS,
        "actual_impact": 70.0,
        "time_invested": 1.5,
    }
    data.update(overrides)
    return OpportunityFeedback(**data)


class TestRecordFeedback:

    def test_successful_outcome_completes_opportunity(self, service, uow, make_suggestion, now):
        suggestion = make_suggestion(status=OpportunityStatus.ACCEPTED)

        signal = service.record_feedback(feedback_for(suggestion.id))

        stored = uow.opportunities.get(suggestion.id)
        assert signal.success is True
        assert signal.predicted_impact == 80.0
        assert stored.status == OpportunityStatus.COMPLETED
        assert stored.completed_at == now
        assert stored.acted_at == now
        assert stored.metadata["success"] is True
        assert stored.metadata["actual_outcome"] == "SUCCESS"
        assert service.learning_log == [signal]

    def test_impact_below_prediction_is_not_success(self, service, make_suggestion):
        suggestion = make_suggestion()

        signal = service.record_feedback(feedback_for(suggestion.id, actual_impact=50.0))

        assert signal.success is False

    def test_low_rating_is_not_success(self, service, make_suggestion):
        suggestion = make_suggestion()

        signal = service.record_feedback(feedback_for(suggestion.id, rating=3))

        assert signal.success is False

    @pytest.mark.parametrize("overrides,field", [
        ({"rating": 0}, "rating"),
        ({"rating": 6}, "rating"),
        ({"actual_impact": 101.0}, "actual_impact"),
        ({"time_invested": -1.0}, "time_invested"),
        ({"actual_outcome": "GREAT"}, "actual_outcome"),
    ])
    def test_invalid_feedback(self, service, make_suggestion, overrides, field):
        suggestion = make_suggestion()

        with pytest.raises(ValidationError) as exc_info:
            service.record_feedback(feedback_for(suggestion.id, **overrides))

        assert field in exc_info.value.details

    def test_unknown_opportunity(self, service):
        with pytest.raises(NotFoundError):
            service.record_feedback(feedback_for("missing"))

    @pytest.mark.parametrize("status", [OpportunityStatus.EXPIRED, OpportunityStatus.REJECTED])
    def test_closed_opportunities_reject_feedback(self, service, uow, make_suggestion, status):
        suggestion = make_suggestion(status=status)

        with pytest.raises(ConflictError):
            service.record_feedback(feedback_for(suggestion.id))
        assert uow.opportunities.get_feedback(suggestion.id) is None

    def test_feedback_is_recorded_once(self, service, make_suggestion):
        suggestion = make_suggestion()
        service.record_feedback(feedback_for(suggestion.id))

        with pytest.raises(ConflictError):
            service.record_feedback(feedback_for(suggestion.id, rating=1))

    def test_learning_signals_survive_restart(self, service, uow, clock, make_suggestion):
        suggestion = make_suggestion()
        service.record_feedback(feedback_for(suggestion.id))

        signals = SuccessTrackingService(uow, clock).learning_signals(ACCOUNT)

        assert len(signals) == 1
        assert signals[0]["opportunity_id"] == suggestion.id
        assert signals[0]["success"] is True


class TestComputeMetrics:

    @pytest.fixture
    def history(self, make_suggestion, now):
        created = now - timedelta(days=5)
        make_suggestion(status=OpportunityStatus.ACCEPTED, acted_at=created + timedelta(days=1))
        make_suggestion(
            status=OpportunityStatus.COMPLETED,
            acted_at=created + timedelta(days=3),
            completed_at=created + timedelta(days=4),
            metadata={"success": True, "actual_outcome": "SUCCESS", "actual_impact": 60.0, "rating": 5},
        )
        make_suggestion(status=OpportunityStatus.REJECTED)
        make_suggestion(status=OpportunityStatus.EXPIRED)
        make_suggestion()
        make_suggestion(created_at=now - timedelta(days=120), status=OpportunityStatus.ACCEPTED)

    def test_rates(self, service, history):
        metrics = service.compute_metrics(ACCOUNT)

        assert metrics.total_opportunities == 5
        assert metrics.expired_opportunities == 1
        assert metrics.acceptance_rate == 50.0
        assert metrics.completion_rate == 50.0
        assert metrics.success_rate_by_category == {"RECONNECTION": 25.0}

    def test_timing_and_accuracy(self, service, history):
        metrics = service.compute_metrics(ACCOUNT)

        assert metrics.average_time_to_action == 2.0
        assert metrics.median_time_to_action == 2.0
        assert metrics.average_time_to_completion == 1.0
        assert metrics.confidence_accuracy == 1.0
        assert metrics.impact_accuracy == 0.75
        assert metrics.user_engagement_score == 40.0

    def test_empty_window(self, service):
        metrics = service.compute_metrics(ACCOUNT)

        assert metrics.total_opportunities == 0
        assert metrics.confidence_accuracy is None
        assert service.recommend_adjustments(metrics) == []


class TestRecommendations:

    def test_high_acceptance_raises_threshold(self, service):
        metrics = SuccessMetrics(
            account_id=ACCOUNT,
            window_days=90,
            total_opportunities=10,
            acceptance_rate=90.0,
            completion_rate=80.0,
            average_time_to_action=1.0,
            user_engagement_score=80.0,
        )

        adjustments = service.recommend_adjustments(metrics)

        assert [a.kind for a in adjustments] == ["raise_confidence_threshold"]
        assert adjustments[0].delta == pytest.approx(0.05)
        assert adjustments[0].message.startswith("Raise confidence threshold")

    def test_poor_metrics_produce_several_recommendations(self, service):
        metrics = SuccessMetrics(
            account_id=ACCOUNT,
            window_days=90,
            total_opportunities=10,
            acceptance_rate=20.0,
            completion_rate=0.0,
            average_time_to_action=9.0,
            success_rate_by_category={"RECONNECTION": 80.0, "INTRODUCTION": 40.0},
            confidence_accuracy=0.5,
            user_engagement_score=10.0,
        )

        adjustments = service.recommend_adjustments(metrics)

        assert [a.kind for a in adjustments] == [
            "lower_confidence_threshold",
            "improve_actionability",
            "improve_urgency",
            "category_underperforming",
            "recalibrate_confidence",
            "improve_engagement",
        ]
        lagging = adjustments[3]
        assert lagging.category == "INTRODUCTION"
        assert lagging.parameter == "category_multipliers"


class TestApplyAdjustments:

    def test_floor_and_multiplier_changes_bump_version(self, config):
        adjustments = [
            Adjustment("raise_confidence_threshold", "", "generation.opportunity_confidence_floor", 0.05),
            Adjustment("category_underperforming", "", "category_multipliers", -0.1, OpportunityCategory.INTRODUCTION.value),
        ]

        updated = SuccessTrackingService.apply_adjustments(config, adjustments)

        assert updated.version == config.version + 1
        assert updated.generation.opportunity_confidence_floor == pytest.approx(0.15)
        assert updated.category_multipliers == {"INTRODUCTION": 0.9}
        assert config.generation.opportunity_confidence_floor == pytest.approx(0.1)
        assert config.category_multipliers == {}

    def test_floor_is_clamped(self):
        config = EngineConfig(generation=GenerationThresholds(opportunity_confidence_floor=0.95))
        raise_floor = Adjustment("raise_confidence_threshold", "", "generation.opportunity_confidence_floor", 0.05)

        updated = SuccessTrackingService.apply_adjustments(config, [raise_floor])

        assert updated.generation.opportunity_confidence_floor == pytest.approx(0.95)

    def test_advisory_only_keeps_config(self, config):
        advice = [Adjustment("improve_engagement", "Improve user experience")]

        assert SuccessTrackingService.apply_adjustments(config, advice) is config


class TestLearningInsights:

    def test_groups_need_enough_samples(self, service, make_suggestion):
        outcome = {"actual_outcome": "SUCCESS", "rating": 5, "success": True}
        for confidence in (0.85, 0.9, 0.95):
            make_suggestion(status=OpportunityStatus.COMPLETED, confidence_score=confidence, metadata=dict(outcome))
        for _ in range(2):
            make_suggestion(status=OpportunityStatus.COMPLETED, category=OpportunityCategory.INTRODUCTION, metadata=dict(outcome))

        insights = service.learning_insights(ACCOUNT)

        assert len(insights) == 1
        insight = insights[0]
        assert insight.category == "RECONNECTION"
        assert insight.samples == 3
        assert insight.success_factors == ["High confidence threshold"]
        assert insight.failure_factors == []
        assert insight.optimal_confidence_range == (0.85, 0.95)
