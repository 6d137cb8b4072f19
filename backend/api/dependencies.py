"""FastAPI dependencies wiring the engine to a request."""

from typing import Generator, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from lib.database import get_db
from lib.llm_client import build_summarizer
from repositories.base import UnitOfWork
from repositories.sql import SqlUnitOfWork
from services.network_engine import NetworkEngine

_engine: Optional[NetworkEngine] = None


def get_uow(db: Session = Depends(get_db)) -> Generator[UnitOfWork, None, None]:
    """Unit of work over the request's session"""
    yield SqlUnitOfWork(db)


def get_engine() -> NetworkEngine:
    """Process-wide engine; holds the default config and in-process account locks"""
    global _engine
    if _engine is None:
        _engine = NetworkEngine(uow_factory=SqlUnitOfWork, summarize=build_summarizer())
    return _engine
