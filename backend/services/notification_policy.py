"""
Opportunity Notification Policy

Decides which suggestions a user hears about and how they are bundled, and
dispatches the resulting notifications through a pluggable sink. Delivered
and dismissed opportunity ids are recorded per user, so a rerun never
notifies about the same opportunity twice.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Set

from models.domain import (
    Notification,
    NotificationKind,
    NotificationSettings,
    OpportunityPriority,
    OpportunityStatus,
    OpportunitySuggestion,
)
from repositories.base import NotificationSink, UnitOfWork

logger = logging.getLogger(__name__)

EXPIRING_WINDOW_DAYS = 3
DIGEST_SIZE = 5


@dataclass
class NotificationPlan:
    user_id: str
    notifications: List[Notification] = field(default_factory=list)

    @property
    def opportunity_ids(self) -> List[str]:
        seen = []
        for notification in self.notifications:
            for opportunity_id in notification.opportunity_ids:
                if opportunity_id not in seen:
                    seen.append(opportunity_id)
        return seen

    def __len__(self) -> int:
        return len(self.notifications)


def _days_until(moment: Optional[datetime], now: datetime) -> Optional[float]:
    if moment is None:
        return None
    return (moment - now).total_seconds() / 86400


def is_relevant(suggestion: OpportunitySuggestion, settings: NotificationSettings) -> bool:
    """User preference filter shared by alerts and digests"""
    if settings.enabled_categories and suggestion.category not in settings.enabled_categories:
        return False
    if suggestion.confidence_score < settings.min_confidence:
        return False
    if suggestion.impact_score < settings.min_impact:
        return False
    if settings.urgent_only and suggestion.priority != OpportunityPriority.URGENT:
        return False
    return True


def _contact_line(titles: List[str], limit: int = 2) -> str:
    line = ", ".join(titles[:limit])
    if len(titles) > limit:
        line += f" and {len(titles) - limit} more"
    return line


def plan_notifications(
    suggestions: Iterable[OpportunitySuggestion],
    settings: NotificationSettings,
    already_sent: Set[str],
    now: datetime,
) -> NotificationPlan:
    """
    Build the notifications one user should receive for a set of suggestions

    Args:
        suggestions: Candidate suggestions, usually the account's PENDING ones
        settings: The user's notification preferences
        already_sent: Opportunity ids previously sent to or dismissed by the user
        now: Reference time for expiry checks

    Returns:
        A plan with urgent alerts first, then high/medium bundles, then one
        expiring-soon bundle
    """
    plan = NotificationPlan(user_id=settings.user_id)
    relevant = [
        s for s in suggestions
        if s.id not in already_sent
        and s.status == OpportunityStatus.PENDING
        and (s.expires_at is None or s.expires_at > now)
        and is_relevant(s, settings)
    ]
    if not relevant:
        return plan

    relevant.sort(key=lambda s: (-s.priority.rank, -s.confidence_score, s.id))
    account_id = relevant[0].account_id

    if settings.real_time_alerts:
        for suggestion in (s for s in relevant if s.priority == OpportunityPriority.URGENT):
            plan.notifications.append(Notification(
                kind=NotificationKind.URGENT_OPPORTUNITY,
                title="Urgent Opportunity Detected!",
                message=(
                    f"High-impact opportunity: {suggestion.title}. "
                    f"Confidence: {round(suggestion.confidence_score * 100)}%"
                ),
                priority=OpportunityPriority.URGENT,
                opportunity_ids=[suggestion.id],
                user_id=settings.user_id,
                account_id=account_id,
                metadata={
                    "opportunity_title": suggestion.title,
                    "confidence_score": suggestion.confidence_score,
                    "impact_score": suggestion.impact_score,
                },
            ))

    high = [s for s in relevant if s.priority == OpportunityPriority.HIGH]
    if high:
        plan.notifications.append(Notification(
            kind=NotificationKind.NEW_OPPORTUNITY,
            title=f"{len(high)} New High-Priority Opportunities",
            message=f"New opportunities detected: {_contact_line([s.title for s in high])}",
            priority=OpportunityPriority.HIGH,
            opportunity_ids=[s.id for s in high],
            user_id=settings.user_id,
            account_id=account_id,
            metadata={
                "count": len(high),
                "top_opportunities": [
                    {"title": s.title, "confidence": s.confidence_score, "impact": s.impact_score}
                    for s in high[:3]
                ],
            },
        ))

    medium = [s for s in relevant if s.priority == OpportunityPriority.MEDIUM]
    if medium:
        plan.notifications.append(Notification(
            kind=NotificationKind.NEW_OPPORTUNITY,
            title=f"{len(medium)} New Opportunities",
            message="Medium-priority opportunities ready for review",
            priority=OpportunityPriority.MEDIUM,
            opportunity_ids=[s.id for s in medium],
            user_id=settings.user_id,
            account_id=account_id,
            metadata={"count": len(medium)},
        ))

    expiring = [
        s for s in relevant
        if s.expires_at is not None and 0 < _days_until(s.expires_at, now) <= EXPIRING_WINDOW_DAYS
    ]
    if expiring:
        plan.notifications.append(Notification(
            kind=NotificationKind.OPPORTUNITY_EXPIRING,
            title="Opportunities Expiring Soon",
            message=f"{len(expiring)} opportunities expire within {EXPIRING_WINDOW_DAYS} days",
            priority=OpportunityPriority.HIGH,
            opportunity_ids=[s.id for s in expiring],
            user_id=settings.user_id,
            account_id=account_id,
            metadata={
                "count": len(expiring),
                "opportunities": [
                    {
                        "title": s.title,
                        "expires_at": s.expires_at.isoformat(),
                        "days_remaining": math.ceil(_days_until(s.expires_at, now)),
                    }
                    for s in expiring
                ],
            },
        ))

    return plan


def build_daily_digest(
    pending: Iterable[OpportunitySuggestion],
    settings: NotificationSettings,
    k: int = DIGEST_SIZE,
) -> Optional[Notification]:
    """Top-K relevant suggestions by composite score, or None when disabled or empty"""
    if not settings.daily_digest:
        return None

    top = sorted(
        (s for s in pending if is_relevant(s, settings)),
        key=lambda s: (-s.composite_score, s.id),
    )[:k]
    if not top:
        return None

    return Notification(
        kind=NotificationKind.DAILY_DIGEST,
        title="Your Daily Opportunity Digest",
        message=f"{len(top)} opportunities ready for your review",
        priority=OpportunityPriority.MEDIUM,
        opportunity_ids=[s.id for s in top],
        user_id=settings.user_id,
        account_id=top[0].account_id,
        metadata={
            "count": len(top),
            "top_opportunities": [
                {
                    "title": s.title,
                    "category": s.category.value,
                    "confidence": s.confidence_score,
                    "impact": s.impact_score,
                    "priority": s.priority.value,
                }
                for s in top
            ],
        },
    )


class LoggingSink(NotificationSink):
    """Sink that only logs; the default outside of workers"""

    def __init__(self):
        self.sent: List[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)
        logger.info(
            f"Notification [{notification.kind.value}] to user {notification.user_id}: "
            f"{notification.title} ({len(notification.opportunity_ids)} opportunities)"
        )


class NotificationDispatcher:
    """Plans and delivers notifications for every user of an account"""

    def __init__(
        self,
        uow: UnitOfWork,
        sink: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.uow = uow
        self.sink = sink or LoggingSink()
        self.clock = clock

    def settings_for(self, user_id: str) -> NotificationSettings:
        return self.uow.notifications.get_settings(user_id) or NotificationSettings(user_id=user_id)

    def process_new_opportunities(self, account_id: str, now: Optional[datetime] = None) -> int:
        """
        Notify every user of an account about suggestions they have not seen

        Returns:
            Number of notifications sent
        """
        now = now or self.clock()
        pending = self.uow.opportunities.list_pending(account_id, now)
        sent = 0

        for user_id in self.uow.notifications.users_for_account(account_id):
            plan = plan_notifications(
                pending,
                self.settings_for(user_id),
                self.uow.notifications.sent_ids(user_id),
                now,
            )
            if not plan.notifications:
                continue

            with self.uow.transaction():
                for notification in plan.notifications:
                    self.sink.send(notification)
                self.uow.notifications.mark_sent(user_id, plan.opportunity_ids)
            sent += len(plan)
            logger.info(f"Sent {len(plan)} notifications to user {user_id} for account {account_id}")

        return sent

    def send_daily_digest(self, account_id: str, now: Optional[datetime] = None) -> int:
        """Send a digest to every user that has one enabled; returns digests sent"""
        now = now or self.clock()
        pending = [
            s for s in self.uow.opportunities.list_pending(account_id, now)
            if s.status == OpportunityStatus.PENDING
        ]
        sent = 0
        for user_id in self.uow.notifications.users_for_account(account_id):
            digest = build_daily_digest(pending, self.settings_for(user_id))
            if digest is None:
                continue
            self.sink.send(digest)
            sent += 1
        logger.info(f"Sent {sent} daily digests for account {account_id}")
        return sent

    def dismiss(self, user_id: str, opportunity_id: str) -> None:
        with self.uow.transaction():
            self.uow.notifications.mark_dismissed(user_id, opportunity_id)
        logger.info(f"Opportunity {opportunity_id} dismissed by user {user_id}")
