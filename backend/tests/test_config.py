"""Tests for environment-driven settings."""

import pytest

from config import Settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("REDIS_URL", "CELERY_BROKER_URL", "CELERY_RESULT_BACKEND", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_celery_urls_fall_back_to_redis_url(clean_env):
    clean_env.setenv("REDIS_URL", "redis://cache:6379/3")

    settings = Settings(_env_file=None)

    assert settings.REDIS_URL == "redis://cache:6379/3"
    assert settings.CELERY_BROKER_URL == "redis://cache:6379/3"
    assert settings.CELERY_RESULT_BACKEND == "redis://cache:6379/3"


def test_explicit_celery_urls_win(clean_env):
    clean_env.setenv("REDIS_URL", "redis://cache:6379/3")
    clean_env.setenv("CELERY_BROKER_URL", "redis://broker:6379/1")

    settings = Settings(_env_file=None)

    assert settings.CELERY_BROKER_URL == "redis://broker:6379/1"
    assert settings.CELERY_RESULT_BACKEND == "redis://cache:6379/3"


def test_plain_fields_read_their_own_names(clean_env):
    clean_env.setenv("DATABASE_URL", "postgresql://db/crew")

    settings = Settings(_env_file=None)

    assert settings.DATABASE_URL == "postgresql://db/crew"
    assert settings.CELERY_BROKER_URL == "redis://localhost:6379/0"
