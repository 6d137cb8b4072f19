"""
Notification API Routes

User notification preferences and manual triggers for notification runs.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_engine, get_uow
from api.schemas import BatchResultResponse
from models.domain import NotificationSettings, OpportunityCategory
from repositories.base import UnitOfWork
from services.network_engine import NetworkEngine
from services.notification_policy import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationSettingsModel(BaseModel):
    enabled_categories: List[OpportunityCategory] = Field(default_factory=lambda: list(OpportunityCategory))
    min_confidence: float = Field(0.4, ge=0.0, le=1.0)
    min_impact: float = Field(60.0, ge=0.0, le=100.0)
    daily_digest: bool = True
    real_time_alerts: bool = True
    urgent_only: bool = False


class NotificationSettingsUpdate(NotificationSettingsModel):
    account_id: str


@router.get("/settings/{user_id}", response_model=NotificationSettingsModel)
def get_notification_settings(user_id: str, uow: UnitOfWork = Depends(get_uow)):
    """Stored preferences, or the defaults for users without any"""
    settings = NotificationDispatcher(uow).settings_for(user_id)
    return NotificationSettingsModel(
        enabled_categories=settings.enabled_categories,
        min_confidence=settings.min_confidence,
        min_impact=settings.min_impact,
        daily_digest=settings.daily_digest,
        real_time_alerts=settings.real_time_alerts,
        urgent_only=settings.urgent_only,
    )


@router.put("/settings/{user_id}", response_model=NotificationSettingsModel)
def update_notification_settings(
    user_id: str,
    request: NotificationSettingsUpdate,
    uow: UnitOfWork = Depends(get_uow),
):
    settings = NotificationSettings(user_id=user_id, **request.model_dump(exclude={"account_id"}))
    with uow.transaction():
        uow.notifications.save_settings(request.account_id, settings)
    logger.info(f"Notification settings updated for user {user_id}")
    return NotificationSettingsModel(**request.model_dump(exclude={"account_id"}))


@router.post("/{user_id}/dismiss/{opportunity_id}", status_code=204)
def dismiss_opportunity(user_id: str, opportunity_id: str, uow: UnitOfWork = Depends(get_uow)):
    """Stop notifying a user about an opportunity"""
    NotificationDispatcher(uow).dismiss(user_id, opportunity_id)


@router.post("/accounts/{account_id}/process", response_model=BatchResultResponse)
def process_new_opportunities(account_id: str, engine: NetworkEngine = Depends(get_engine)):
    return engine.process_new_opportunities(account_id)


@router.post("/accounts/{account_id}/digest", response_model=BatchResultResponse)
def send_daily_digest(account_id: str, engine: NetworkEngine = Depends(get_engine)):
    return engine.send_daily_digest(account_id)
