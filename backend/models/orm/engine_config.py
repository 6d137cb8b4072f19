"""Per-account engine configuration versions."""

from sqlalchemy import Column, Integer, JSON, String, UniqueConstraint

from .base import BaseModel


class EngineConfigVersion(BaseModel):
    """One row per applied config version; the highest version is current."""

    __tablename__ = "engine_configs"
    __table_args__ = (
        UniqueConstraint("account_id", "version", name="uq_engine_config_account_version"),
    )

    account_id = Column(String(36), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)  # EngineConfig.model_dump(mode="json")
