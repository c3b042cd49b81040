from __future__ import annotations
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from .config import Settings

class Base(DeclarativeBase):
    pass

def make_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=False, future=True)

def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def ensure_sqlite_schema(engine: AsyncEngine) -> None:
    # importing registers the tables on Base.metadata
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        result = await conn.execute(text("PRAGMA table_info(learners);"))
        columns = {row[1] for row in result.fetchall()}
        if "api_token" not in columns:
            await conn.execute(text("ALTER TABLE learners ADD COLUMN api_token TEXT;"))
        if "recovered_at" not in columns:
            await conn.execute(text("ALTER TABLE learners ADD COLUMN recovered_at DATETIME;"))
        result = await conn.execute(text("PRAGMA table_info(assessments);"))
        columns = {row[1] for row in result.fetchall()}
        if "is_published" not in columns:
            await conn.execute(
                text("ALTER TABLE assessments ADD COLUMN is_published BOOLEAN DEFAULT 1;")
            )
        await conn.execute(
            text("UPDATE assessments SET is_published=1 WHERE is_published IS NULL;")
        )
        await conn.execute(
            text("UPDATE learners SET ui_lang='en' WHERE ui_lang IS NULL OR ui_lang='';")
        )
