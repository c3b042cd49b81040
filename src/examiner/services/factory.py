from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from .base import AssessmentCatalog, AttemptService
from .http import ApiClient, HttpAssessmentCatalog, HttpAttemptService
from .sql import SqlAssessmentCatalog, SqlAttemptService


def make_services(
    settings: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    learner_id: int,
    api_token: str | None = None,
) -> tuple[AttemptService, AssessmentCatalog]:
    if settings.backend == "http":
        client = ApiClient(
            settings.api_base_url,
            token=api_token or settings.api_token,
            timeout_s=settings.request_timeout_s,
        )
        return (
            HttpAttemptService(client, lang=settings.content_lang),
            HttpAssessmentCatalog(client, lang=settings.content_lang),
        )
    return SqlAttemptService(sessionmaker, learner_id), SqlAssessmentCatalog(sessionmaker)
