"""
Relationship Discovery API Routes

Endpoints for running discovery and reviewing candidate relationships.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_engine, get_uow
from api.schemas import BatchResultResponse, CandidateResponse, RelationshipResponse
from repositories.base import UnitOfWork
from services.network_engine import NetworkEngine
from services.relationship_discovery import RelationshipDiscoveryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/relationships", tags=["relationships"])


class ApproveRequest(BaseModel):
    is_mutual: bool = False


@router.post("/accounts/{account_id}/discover", response_model=BatchResultResponse)
def discover_account(account_id: str, engine: NetworkEngine = Depends(get_engine)):
    """Run a discovery batch for every active contact of an account"""
    return engine.run_discovery_batch(account_id)


@router.post("/contacts/{contact_id}/discover", response_model=List[CandidateResponse])
def discover_for_contact(
    contact_id: str,
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    """Discover candidates between one contact and the rest of its account"""
    contact = uow.contacts.get(contact_id)
    config = engine.config_for(uow, contact.account_id if contact else None)
    return RelationshipDiscoveryService(uow, config).discover_for_contact(contact_id)


@router.get("/accounts/{account_id}/candidates", response_model=List[CandidateResponse])
def list_pending_candidates(
    account_id: str,
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    """Pending candidates, most confident first"""
    return RelationshipDiscoveryService(uow, engine.config_for(uow, account_id)).list_pending(account_id)


@router.post("/candidates/{candidate_id}/approve", response_model=RelationshipResponse)
def approve_candidate(
    candidate_id: str,
    request: ApproveRequest = ApproveRequest(),
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    """Promote a pending candidate to a verified relationship"""
    return RelationshipDiscoveryService(uow, engine.config).approve(candidate_id, is_mutual=request.is_mutual)


@router.post("/candidates/{candidate_id}/reject", response_model=CandidateResponse)
def reject_candidate(
    candidate_id: str,
    uow: UnitOfWork = Depends(get_uow),
    engine: NetworkEngine = Depends(get_engine),
):
    """Reject a pending candidate; it will not be suggested again for the same evidence"""
    return RelationshipDiscoveryService(uow, engine.config).reject(candidate_id)
