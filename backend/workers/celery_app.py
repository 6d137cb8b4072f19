"""
Celery Application Configuration

Main Celery application instance for the network engine batches. Beat owns
all timing; each periodic entry fans out to one task per account.
"""

import os
from datetime import timedelta

from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue

from config import settings

celery_app = Celery('crew_network')

celery_app.conf.update(
    # Broker and Backend
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,

    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone and UTC
    timezone='UTC',
    enable_utc=True,

    # Task Execution
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes max
    task_soft_time_limit=1500,
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Worker Configuration
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result Backend Settings
    result_expires=3600,

    task_routes={
        # Notifications are user-facing
        'workers.tasks.process_new_opportunities_task': {'queue': 'notifications'},
        'workers.tasks.send_daily_digest_task': {'queue': 'notifications'},
        'workers.tasks.deliver_notification_task': {'queue': 'notifications'},

        # Batch pipeline
        'workers.tasks.relationship_discovery_task': {'queue': 'batch'},
        'workers.tasks.contact_scoring_task': {'queue': 'batch'},
        'workers.tasks.opportunity_generation_task': {'queue': 'batch'},

        # Fan-out and housekeeping
        'workers.tasks.fan_out_accounts_task': {'queue': 'default'},
        'workers.tasks.expire_opportunities_task': {'queue': 'default'},
    },

    task_default_queue='default',
    task_default_exchange='crew_network',
    task_default_exchange_type='direct',
    task_default_routing_key='default',

    task_queues=(
        Queue('notifications',
              Exchange('crew_network', type='direct'),
              routing_key='notifications',
              queue_arguments={'x-max-priority': 10}),
        Queue('default',
              Exchange('crew_network', type='direct'),
              routing_key='default',
              queue_arguments={'x-max-priority': 5}),
        Queue('batch',
              Exchange('crew_network', type='direct'),
              routing_key='batch',
              queue_arguments={'x-max-priority': 3}),
    ),

    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,

    task_annotations={
        'workers.tasks.opportunity_generation_task': {
            'rate_limit': '30/m',  # narratives call OpenAI
        },
    },
)

celery_app.conf.beat_schedule = {
    'discover-relationships': {
        'task': 'workers.tasks.fan_out_accounts_task',
        'schedule': timedelta(hours=24),
        'args': ('relationship_discovery',),
        'options': {'queue': 'default'}
    },
    'score-contacts': {
        'task': 'workers.tasks.fan_out_accounts_task',
        'schedule': timedelta(hours=6),
        'args': ('contact_scoring',),
        'options': {'queue': 'default'}
    },
    'generate-opportunities': {
        'task': 'workers.tasks.fan_out_accounts_task',
        'schedule': timedelta(hours=6),
        'args': ('opportunity_generation',),
        'options': {'queue': 'default'}
    },
    'process-new-opportunities': {
        'task': 'workers.tasks.fan_out_accounts_task',
        'schedule': timedelta(hours=1),
        'args': ('opportunity_notifications',),
        'options': {'queue': 'default'}
    },
    'daily-opportunity-digest': {
        'task': 'workers.tasks.fan_out_accounts_task',
        'schedule': crontab(hour=9, minute=0),
        'args': ('daily_digest',),
        'options': {'queue': 'default'}
    },
    'expire-stale-opportunities': {
        'task': 'workers.tasks.expire_opportunities_task',
        'schedule': timedelta(hours=1),
        'options': {'queue': 'default'}
    },
}

celery_app.autodiscover_tasks(['workers'])

if os.getenv('ENVIRONMENT') == 'development':
    celery_app.conf.task_eager_propagates = True
    celery_app.conf.worker_log_level = 'DEBUG'
else:
    celery_app.conf.worker_log_level = 'INFO'
    celery_app.conf.worker_hijack_root_logger = False

__all__ = ['celery_app']
