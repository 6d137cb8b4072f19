"""
Background Task Definitions

Celery wrappers around the network engine entry points. The engine never
raises for batch failures, so tasks return ``BatchResult.to_dict()`` and only
retry on errors outside a batch (broker, fan-out queries).
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from lib.account_lock import RedisAccountLock
from lib.llm_client import build_summarizer
from models.domain import Notification
from repositories.base import NotificationSink
from repositories.sql import SqlUnitOfWork
from services.network_engine import NetworkEngine
from services.opportunity_generator import OpportunityGenerator
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_engine: Optional[NetworkEngine] = None


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

class CelerySink(NotificationSink):
    """Hands each notification to the notifications queue"""

    def send(self, notification: Notification) -> None:
        payload = asdict(notification)
        payload["kind"] = notification.kind.value
        payload["priority"] = notification.priority.value
        deliver_notification_task.delay(payload)


def get_engine() -> NetworkEngine:
    """Worker-wide engine backed by SQL, redis locks and the Celery sink"""
    global _engine
    if _engine is None:
        _engine = NetworkEngine(
            uow_factory=SqlUnitOfWork,
            lock=RedisAccountLock(),
            summarize=build_summarizer(),
            sink=CelerySink(),
        )
    return _engine


def handle_task_error(task_name: str, error: Exception, context: Dict[str, Any] = None):
    """Standardized error handling for tasks"""
    error_info = {
        'task_name': task_name,
        'error_type': type(error).__name__,
        'error_message': str(error),
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'context': context or {}
    }
    logger.error(f"Task {task_name} failed: {error}", extra=error_info)
    return error_info


def _report(result) -> Dict[str, Any]:
    data = result.to_dict()
    data['completed_at'] = datetime.now(timezone.utc).isoformat()
    if not result.ok:
        logger.warning(
            f"{result.operation} for account {result.account_id} finished with {len(result.errors)} errors",
            extra={'account_id': result.account_id, 'errors': result.errors},
        )
    return data


# =============================================================================
# BATCH TASKS
# =============================================================================

@celery_app.task(bind=True)
def relationship_discovery_task(self, account_id: str):
    """Discover candidate relationships across one account"""
    return _report(get_engine().run_discovery_batch(account_id))


@celery_app.task(bind=True)
def contact_scoring_task(self, account_id: str):
    """Rescore every active contact of one account"""
    return _report(get_engine().run_scoring_batch(account_id))


@celery_app.task(bind=True)
def opportunity_generation_task(self, account_id: str):
    """Run the opportunity pattern catalog for one account"""
    return _report(get_engine().run_opportunity_generation(account_id))


# =============================================================================
# NOTIFICATION TASKS
# =============================================================================

@celery_app.task(bind=True)
def process_new_opportunities_task(self, account_id: str):
    return _report(get_engine().process_new_opportunities(account_id))


@celery_app.task(bind=True)
def send_daily_digest_task(self, account_id: str):
    return _report(get_engine().send_daily_digest(account_id))


@celery_app.task(bind=True, max_retries=2, default_retry_delay=120)
def deliver_notification_task(self, notification: Dict[str, Any]):
    """
    Deliver one notification to its user

    Args:
        notification: Serialized Notification
    """
    try:
        delivered_at = datetime.now(timezone.utc).isoformat()
        logger.info(
            f"Notification [{notification['kind']}] delivered to user {notification['user_id']}: "
            f"{notification['title']}",
            extra={'notification_id': notification['id'], 'opportunity_ids': notification['opportunity_ids']},
        )
        return {
            'status': 'sent',
            'notification_id': notification.get('id') or str(uuid4()),
            'timestamp': delivered_at,
        }
    except Exception as e:
        handle_task_error('deliver_notification_task', e, {'user_id': notification.get('user_id')})
        raise self.retry(exc=e, countdown=120)


# =============================================================================
# SCHEDULED FAN-OUT
# =============================================================================

OPERATION_TASKS = {
    'relationship_discovery': relationship_discovery_task,
    'contact_scoring': contact_scoring_task,
    'opportunity_generation': opportunity_generation_task,
    'opportunity_notifications': process_new_opportunities_task,
    'daily_digest': send_daily_digest_task,
}


@celery_app.task(bind=True, max_retries=1, default_retry_delay=600)
def fan_out_accounts_task(self, operation: str):
    """
    Enqueue one task per account for a scheduled operation

    Args:
        operation: Key of OPERATION_TASKS
    """
    task = OPERATION_TASKS.get(operation)
    if task is None:
        raise ValueError(f"Unknown scheduled operation: {operation}")

    uow = SqlUnitOfWork()
    try:
        account_ids = uow.contacts.account_ids()
        for account_id in account_ids:
            task.delay(account_id)
        logger.info(f"Scheduled {operation} for {len(account_ids)} accounts")
        return {'operation': operation, 'accounts': len(account_ids)}
    except Exception as e:
        handle_task_error('fan_out_accounts_task', e, {'operation': operation})
        raise self.retry(exc=e, countdown=600)
    finally:
        uow.close()


@celery_app.task(bind=True, max_retries=1, default_retry_delay=600)
def expire_opportunities_task(self):
    """Move suggestions past their expiry to EXPIRED for every account"""
    uow = SqlUnitOfWork()
    try:
        generator = OpportunityGenerator(uow)
        expired = {account_id: generator.expire_stale(account_id) for account_id in uow.contacts.account_ids()}
        total = sum(expired.values())
        logger.info(f"Expired {total} opportunities across {len(expired)} accounts")
        return {'expired': total, 'accounts': len(expired)}
    except Exception as e:
        handle_task_error('expire_opportunities_task', e)
        raise self.retry(exc=e, countdown=600)
    finally:
        uow.close()
