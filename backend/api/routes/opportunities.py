"""
Opportunity API Routes

Generation, ranking, status transitions, outcome feedback and success
metrics for opportunity suggestions.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import get_engine, get_uow
from api.schemas import BatchResultResponse, OpportunityResponse
from models.domain import ActualOutcome, OpportunityFeedback, OpportunityStatus
from repositories.base import UnitOfWork
from services.network_engine import NetworkEngine
from services.opportunity_generator import OpportunityGenerator
from services.success_tracking import SuccessTrackingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/opportunities", tags=["opportunities"])


class StatusUpdateRequest(BaseModel):
    status: OpportunityStatus


class FeedbackRequest(BaseModel):
    """Outcome report; range checks happen in the success tracker"""
    rating: int
    actual_outcome: ActualOutcome
    actual_impact: float
    time_invested: float = 0.0
    feedback: str = ""
    user_id: Optional[str] = None
    would_recommend: Optional[bool] = None


class LearningSignalResponse(BaseModel):
    opportunity_id: str
    success: bool
    predicted_confidence: float
    predicted_impact: float
    actual_impact: float
    rating: int


class RecalibrationResponse(BaseModel):
    version: int
    opportunity_confidence_floor: float
    category_multipliers: Dict[str, float]
    adjustments: List[Dict[str, Any]] = Field(default_factory=list)


@router.post("/accounts/{account_id}/generate", response_model=BatchResultResponse)
def generate_opportunities(account_id: str, engine: NetworkEngine = Depends(get_engine)):
    """Run the opportunity pattern catalog for an account"""
    return engine.run_opportunity_generation(account_id)


@router.get("/accounts/{account_id}", response_model=List[OpportunityResponse])
def list_opportunities(
    account_id: str,
    sort_by: str = Query("composite"),
    limit: int = Query(50, ge=1, le=500),
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    """Open, unexpired suggestions ranked by ``sort_by``"""
    config = engine.config_for(uow, account_id)
    return OpportunityGenerator(uow, config).list_pending(account_id, sort_by=sort_by)[:limit]


@router.get("/accounts/{account_id}/dashboard")
def opportunity_dashboard(
    account_id: str,
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    return OpportunityGenerator(uow, engine.config_for(uow, account_id)).dashboard(account_id)


@router.patch("/{opportunity_id}/status", response_model=OpportunityResponse)
def update_opportunity_status(
    opportunity_id: str,
    request: StatusUpdateRequest,
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    return OpportunityGenerator(uow, engine.config).update_status(opportunity_id, request.status)


@router.post("/{opportunity_id}/feedback", response_model=LearningSignalResponse)
def record_feedback(
    opportunity_id: str,
    request: FeedbackRequest,
    uow: UnitOfWork = Depends(get_uow),
):
    """Record the real-world outcome and close the opportunity"""
    feedback = OpportunityFeedback(opportunity_id=opportunity_id, **request.model_dump())
    signal = SuccessTrackingService(uow).record_feedback(feedback)
    return LearningSignalResponse(
        opportunity_id=signal.opportunity_id,
        success=signal.success,
        predicted_confidence=signal.predicted_confidence,
        predicted_impact=signal.predicted_impact,
        actual_impact=signal.actual_impact,
        rating=signal.rating,
    )


@router.get("/accounts/{account_id}/metrics")
def success_metrics(
    account_id: str,
    window_days: int = Query(90, ge=1, le=730),
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    """Success metrics with advisory recommendations"""
    tracker = SuccessTrackingService(uow)
    metrics = tracker.compute_metrics(account_id, window_days)
    adjustments = tracker.recommend_adjustments(metrics, engine.config_for(uow, account_id))
    return {
        "metrics": asdict(metrics),
        "recommendations": [asdict(a) for a in adjustments],
    }


@router.get("/accounts/{account_id}/insights")
def learning_insights(account_id: str, uow: UnitOfWork = Depends(get_uow)):
    return [asdict(insight) for insight in SuccessTrackingService(uow).learning_insights(account_id)]


@router.post("/accounts/{account_id}/recalibrate", response_model=RecalibrationResponse)
def recalibrate(
    account_id: str,
    window_days: int = Query(90, ge=1, le=730),
    engine: NetworkEngine = Depends(get_engine),
):
    """Apply recommended adjustments, producing a new config version"""
    config, adjustments = engine.recalibrate(account_id, window_days)
    return RecalibrationResponse(
        version=config.version,
        opportunity_confidence_floor=config.generation.opportunity_confidence_floor,
        category_multipliers=config.category_multipliers,
        adjustments=[asdict(a) for a in adjustments],
    )
