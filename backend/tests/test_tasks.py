"""Tests for the Celery task wrappers."""

from unittest.mock import Mock, patch

import pytest

from models.domain import BatchResult, Notification, NotificationKind, OpportunityPriority
from workers import tasks


@pytest.fixture
def engine():
    engine = Mock()
    engine.run_scoring_batch.return_value = BatchResult(
        operation="contact_scoring", account_id="acct-1", processed=3, succeeded=3
    )
    return engine


class TestBatchTasks:

    def test_scoring_task_reports_batch_result(self, engine):
        with patch.object(tasks, "get_engine", return_value=engine):
            report = tasks.contact_scoring_task("acct-1")

        engine.run_scoring_batch.assert_called_once_with("acct-1")
        assert report["operation"] == "contact_scoring"
        assert report["succeeded"] == 3
        assert "completed_at" in report

    def test_failed_batch_is_reported_not_raised(self, engine):
        engine.run_discovery_batch.return_value = BatchResult(
            operation="relationship_discovery",
            account_id="acct-1",
            errors=[{"error_type": "ConflictError", "message": "busy", "details": {}}],
        )

        with patch.object(tasks, "get_engine", return_value=engine):
            report = tasks.relationship_discovery_task("acct-1")

        assert report["errors"][0]["error_type"] == "ConflictError"


class TestFanOut:

    def test_one_task_per_account(self):
        uow = Mock()
        uow.contacts.account_ids.return_value = ["a", "b"]

        with patch.object(tasks, "SqlUnitOfWork", return_value=uow), \
                patch.object(tasks.contact_scoring_task, "delay") as delay:
            summary = tasks.fan_out_accounts_task("contact_scoring")

        assert summary == {"operation": "contact_scoring", "accounts": 2}
        assert [c.args for c in delay.call_args_list] == [("a",), ("b",)]
        uow.close.assert_called_once()

    def test_unknown_operation(self):
        with pytest.raises(ValueError):
            tasks.fan_out_accounts_task("defragment")


class TestNotifications:

    def test_celery_sink_enqueues_serialized_notification(self):
        notification = Notification(
            kind=NotificationKind.DAILY_DIGEST,
            title="Your Daily Opportunity Digest",
            message="1 opportunities ready for your review",
            priority=OpportunityPriority.MEDIUM,
            opportunity_ids=["opp1"],
            user_id="u1",
            account_id="acct-1",
            id="n1",
        )

        with patch.object(tasks.deliver_notification_task, "delay") as delay:
            tasks.CelerySink().send(notification)

        payload = delay.call_args.args[0]
        assert payload["kind"] == "DAILY_DIGEST"
        assert payload["priority"] == "MEDIUM"
        assert payload["opportunity_ids"] == ["opp1"]

    def test_deliver_notification(self):
        result = tasks.deliver_notification_task({
            "id": "n1",
            "kind": "NEW_OPPORTUNITY",
            "title": "1 New Opportunities",
            "user_id": "u1",
            "opportunity_ids": ["opp1"],
        })

        assert result["status"] == "sent"
        assert result["notification_id"] == "n1"
