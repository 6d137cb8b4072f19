"""Main FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.errors import register_exception_handlers
from api.routes import contact_scoring, health, notifications, opportunities, relationships
from config import settings
from lib.database import init_db
from lib.logger import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging()
    await init_db()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Relationship discovery, contact scoring and opportunity suggestions for a professional network",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(relationships.router, prefix=settings.API_V1_STR)
app.include_router(contact_scoring.router, prefix=settings.API_V1_STR)
app.include_router(opportunities.router, prefix=settings.API_V1_STR)
app.include_router(notifications.router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to {settings.APP_NAME} API"}
