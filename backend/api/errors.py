"""Map engine exceptions to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lib.exceptions import ConflictError, EngineException, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
}


def status_for(exc: EngineException) -> int:
    for exc_type, status_code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def engine_exception_handler(request: Request, exc: EngineException) -> JSONResponse:
    status_code = status_for(exc)
    if status_code == 500:
        logger.error(f"Unhandled engine error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineException, engine_exception_handler)
