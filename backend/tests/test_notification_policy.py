"""Tests for notification planning and dispatch."""

from datetime import timedelta

import pytest

from models.domain import (
    NotificationKind,
    NotificationSettings,
    OpportunityCategory,
    OpportunityPriority,
    OpportunityStatus,
)
from services.notification_policy import (
    LoggingSink,
    NotificationDispatcher,
    build_daily_digest,
    plan_notifications,
)

ACCOUNT = "acct-1"
USER = "user-1"


@pytest.fixture
def settings():
    return NotificationSettings(user_id=USER)


class TestPlanNotifications:

    def test_bundles_in_order(self, make_suggestion, settings, now):
        urgent = make_suggestion(store_it=False, priority=OpportunityPriority.URGENT, confidence_score=0.95)
        high = make_suggestion(store_it=False)
        expiring = make_suggestion(store_it=False, expires_at=now + timedelta(days=2))
        medium = make_suggestion(store_it=False, priority=OpportunityPriority.MEDIUM)

        plan = plan_notifications([medium, high, expiring, urgent], settings, set(), now)

        assert [n.kind for n in plan.notifications] == [
            NotificationKind.URGENT_OPPORTUNITY,
            NotificationKind.NEW_OPPORTUNITY,
            NotificationKind.NEW_OPPORTUNITY,
            NotificationKind.OPPORTUNITY_EXPIRING,
        ]
        urgent_alert, high_bundle, medium_bundle, expiring_bundle = plan.notifications
        assert urgent_alert.title == "Urgent Opportunity Detected!"
        assert urgent_alert.opportunity_ids == [urgent.id]
        assert high_bundle.title == "2 New High-Priority Opportunities"
        assert set(high_bundle.opportunity_ids) == {high.id, expiring.id}
        assert medium_bundle.title == "1 New Opportunities"
        assert expiring_bundle.opportunity_ids == [expiring.id]
        assert expiring_bundle.metadata["opportunities"][0]["days_remaining"] == 2
        assert sorted(plan.opportunity_ids) == sorted([urgent.id, high.id, expiring.id, medium.id])

    def test_no_realtime_alerts(self, make_suggestion, now):
        settings = NotificationSettings(user_id=USER, real_time_alerts=False)
        urgent = make_suggestion(store_it=False, priority=OpportunityPriority.URGENT)

        plan = plan_notifications([urgent], settings, set(), now)

        assert len(plan) == 0

    def test_filters(self, make_suggestion, settings, now):
        candidates = [
            make_suggestion(store_it=False, id="sent"),
            make_suggestion(store_it=False, confidence_score=0.2),
            make_suggestion(store_it=False, impact_score=30.0),
            make_suggestion(store_it=False, status=OpportunityStatus.VIEWED),
            make_suggestion(store_it=False, expires_at=now - timedelta(minutes=1)),
        ]

        plan = plan_notifications(candidates, settings, {"sent"}, now)

        assert plan.notifications == []

    def test_category_and_urgency_preferences(self, make_suggestion, now):
        settings = NotificationSettings(
            user_id=USER,
            enabled_categories=[OpportunityCategory.INTRODUCTION],
            urgent_only=True,
        )
        reconnection = make_suggestion(store_it=False, priority=OpportunityPriority.URGENT)
        introduction = make_suggestion(store_it=False, category=OpportunityCategory.INTRODUCTION)
        urgent_intro = make_suggestion(
            store_it=False, category=OpportunityCategory.INTRODUCTION, priority=OpportunityPriority.URGENT
        )

        plan = plan_notifications([reconnection, introduction, urgent_intro], settings, set(), now)

        assert plan.opportunity_ids == [urgent_intro.id]


class TestDailyDigest:

    def test_top_k_by_composite(self, make_suggestion, settings):
        suggestions = [make_suggestion(store_it=False, confidence_score=0.5 + i * 0.05) for i in range(7)]

        digest = build_daily_digest(suggestions, settings, k=5)

        assert digest.kind == NotificationKind.DAILY_DIGEST
        assert digest.title == "Your Daily Opportunity Digest"
        assert digest.opportunity_ids == [s.id for s in reversed(suggestions)][:5]

    def test_disabled_or_empty(self, make_suggestion):
        disabled = NotificationSettings(user_id=USER, daily_digest=False)
        picky = NotificationSettings(user_id=USER, min_impact=99.0)
        suggestions = [make_suggestion(store_it=False)]

        assert build_daily_digest(suggestions, disabled) is None
        assert build_daily_digest(suggestions, picky) is None
        assert build_daily_digest([], NotificationSettings(user_id=USER)) is None


class TestNotificationDispatcher:

    @pytest.fixture
    def sink(self):
        return LoggingSink()

    @pytest.fixture
    def dispatcher(self, uow, sink, clock, settings):
        uow.notifications.save_settings(ACCOUNT, settings)
        return NotificationDispatcher(uow, sink, clock)

    def test_never_notifies_twice(self, dispatcher, sink, make_suggestion):
        make_suggestion()
        make_suggestion(priority=OpportunityPriority.URGENT)

        first = dispatcher.process_new_opportunities(ACCOUNT)
        second = dispatcher.process_new_opportunities(ACCOUNT)

        assert first == 2
        assert second == 0
        assert len(sink.sent) == 2

    def test_new_suggestions_after_a_run_are_sent(self, dispatcher, sink, make_suggestion):
        make_suggestion()
        dispatcher.process_new_opportunities(ACCOUNT)
        late = make_suggestion()

        assert dispatcher.process_new_opportunities(ACCOUNT) == 1
        assert sink.sent[-1].opportunity_ids == [late.id]

    def test_dismissed_suggestions_are_skipped(self, dispatcher, sink, make_suggestion):
        suggestion = make_suggestion()

        dispatcher.dismiss(USER, suggestion.id)

        assert dispatcher.process_new_opportunities(ACCOUNT) == 0
        assert sink.sent == []

    def test_daily_digest(self, dispatcher, sink, make_suggestion):
        make_suggestion()
        make_suggestion(status=OpportunityStatus.ACCEPTED)

        assert dispatcher.send_daily_digest(ACCOUNT) == 1
        assert sink.sent[0].opportunity_ids == ["opp001"]

    def test_settings_default_for_unknown_user(self, dispatcher):
        settings = dispatcher.settings_for("someone-else")

        assert settings.user_id == "someone-else"
        assert settings.daily_digest is True
