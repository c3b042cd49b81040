import asyncio, json, sys
from typing import Any
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from .config import load_settings
from .db import ensure_sqlite_schema, make_engine, make_sessionmaker
from .models import AssessmentRow, QuestionRow
from .services.payloads import AssessmentPayload, to_assessment

def _items(data: Any) -> list[dict]:
    if isinstance(data, dict):
        if isinstance(data.get("assessments"), list):
            return data["assessments"]
        return [data]
    return list(data or [])

async def import_assessments(
    sessionmaker: async_sessionmaker[AsyncSession],
    items: list[dict],
    *,
    lang: str = "en",
) -> int:
    """Load assessments in the platform's export shape, replacing rows with the same ids."""
    count = 0
    async with sessionmaker() as s:
        for it in items:
            assessment = to_assessment(AssessmentPayload.model_validate(it), lang)
            await s.execute(delete(QuestionRow).where(QuestionRow.assessment_id == assessment.id))
            # question ids are global; a later assessment takes over a shared question
            ids = [q.id for q in assessment.questions]
            if ids:
                await s.execute(delete(QuestionRow).where(QuestionRow.id.in_(ids)))
            await s.execute(delete(AssessmentRow).where(AssessmentRow.id == assessment.id))
            s.add(AssessmentRow(
                id=assessment.id,
                title=assessment.title,
                description=assessment.description,
                time_limit_minutes=assessment.time_limit_minutes,
                passing_score=assessment.passing_score,
                show_score_immediately=assessment.show_score_immediately,
                show_correct_answers=assessment.show_correct_answers,
                is_published=bool(it.get("isPublished", True)),
            ))
            for i, q in enumerate(assessment.questions, start=1):
                s.add(QuestionRow(
                    id=q.id,
                    assessment_id=assessment.id,
                    order_index=i,
                    question_type=q.type.value,
                    prompt=q.prompt,
                    options_json=json.dumps(
                        [{"id": o.id, "label": o.label} for o in q.options], ensure_ascii=False
                    ) if q.options else None,
                    points=q.points,
                ))
            count += 1
        await s.commit()
    return count

async def main(path: str):
    settings = load_settings()
    engine = make_engine(settings)
    if settings.database_url.startswith("sqlite"):
        await ensure_sqlite_schema(engine)
    Session = make_sessionmaker(engine)
    data = json.loads(open(path, "r", encoding="utf-8").read())
    count = await import_assessments(Session, _items(data), lang=settings.content_lang)
    await engine.dispose()
    print(f"Imported {count} assessment(s) from {path}")

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m examiner.importer data/assessments.json")
        raise SystemExit(2)
    asyncio.run(main(sys.argv[1]))
