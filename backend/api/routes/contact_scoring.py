"""
Contact Scoring API Routes

REST endpoints for contact priority, opportunity and strategic scores.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_engine, get_uow
from api.schemas import BatchResultResponse, ContactSummary
from repositories.base import UnitOfWork
from services.contact_scoring import ContactScoringService
from services.network_engine import NetworkEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contact-scoring", tags=["contact-scoring"])


@router.get("/tiers")
def get_contact_tiers(uow: UnitOfWork = Depends(get_uow)):
    """Available tiers, thresholds and descriptions"""
    service = ContactScoringService(uow)
    return {
        tier: {"threshold": threshold, "description": service.tier_descriptions[tier]}
        for tier, threshold in service.tier_thresholds.items()
    }


@router.get("/weights")
def get_scoring_weights(
    account_id: Optional[str] = None,
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    """Current scoring weights with their config version, per account when one is given"""
    config = engine.config_for(uow, account_id)
    return {"version": config.version, **config.scoring.model_dump()}


@router.post("/accounts/{account_id}/score", response_model=BatchResultResponse)
def score_account(account_id: str, engine: NetworkEngine = Depends(get_engine)):
    """Rescore every active contact of an account"""
    return engine.run_scoring_batch(account_id)


@router.post("/contacts/{contact_id}/score")
def score_contact(
    contact_id: str,
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Score one contact and persist the result"""
    contact = uow.contacts.get(contact_id)
    config = engine.config_for(uow, contact.account_id if contact else None)
    score = ContactScoringService(uow, config).rescore_contact(contact_id)
    return {
        "contact_id": score.contact_id,
        "priority_score": score.priority_score,
        "opportunity_score": score.opportunity_score,
        "strategic_value": score.strategic_value,
        "tier": score.tier,
        "flags": sorted(flag.value for flag in score.flags),
        "factors": score.factors_dict(),
        "scored_at": score.scored_at.isoformat(),
    }


@router.get("/accounts/{account_id}/top-priority", response_model=List[ContactSummary])
def top_priority_contacts(
    account_id: str,
    limit: int = Query(20, ge=1, le=200),
    uow: UnitOfWork = Depends(get_uow),
):
    contacts = ContactScoringService(uow).top_priority(account_id, limit)
    return [ContactSummary.model_validate(c) for c in contacts]


@router.get("/accounts/{account_id}/high-opportunity", response_model=List[ContactSummary])
def high_opportunity_contacts(
    account_id: str,
    min_score: float = Query(70, ge=0, le=100),
    limit: int = Query(20, ge=1, le=200),
    uow: UnitOfWork = Depends(get_uow),
):
    contacts = ContactScoringService(uow).high_opportunity(account_id, min_score, limit)
    return [ContactSummary.model_validate(c) for c in contacts]


@router.get("/accounts/{account_id}/strategic", response_model=List[ContactSummary])
def strategic_contacts(
    account_id: str,
    min_value: float = Query(60, ge=0, le=100),
    limit: int = Query(20, ge=1, le=200),
    uow: UnitOfWork = Depends(get_uow),
):
    contacts = ContactScoringService(uow).strategic_recommendations(account_id, min_value, limit)
    return [ContactSummary.model_validate(c) for c in contacts]
