from __future__ import annotations
import datetime as dt
from sqlalchemy import (
    String, Integer, Float, DateTime, Boolean, Text, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base

UTC = dt.timezone.utc
def utcnow() -> dt.datetime:
    return dt.datetime.now(tz=UTC)

class Learner(Base):
    __tablename__ = "learners"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)  # tg user id
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ui_lang: Mapped[str] = mapped_column(String(8), default="en")  # en/ar
    api_token: Mapped[str | None] = mapped_column(Text, nullable=True)  # http backend only

    # assessment whose attempt screen the learner is on
    current_assessment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # startup recovery guard
    recovered_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

# ---------------- local backend ----------------

class AssessmentRow(Base):
    __tablename__ = "assessments"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_limit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)  # NULL = untimed
    passing_score: Mapped[int] = mapped_column(Integer, default=50)
    show_score_immediately: Mapped[bool] = mapped_column(Boolean, default=False)
    show_correct_answers: Mapped[bool] = mapped_column(Boolean, default=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class QuestionRow(Base):
    __tablename__ = "questions"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    assessment_id: Mapped[str] = mapped_column(String(64), ForeignKey("assessments.id"), index=True)
    order_index: Mapped[int] = mapped_column(Integer)
    question_type: Mapped[str] = mapped_column(String(32))     # mcq | true_false | short_answer | code
    prompt: Mapped[str] = mapped_column(Text)
    options_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON list of {id, label}
    points: Mapped[float] = mapped_column(Float, default=1)
    __table_args__ = (Index("ix_questions_assessment_order", "assessment_id", "order_index"),)

class AttemptRow(Base):
    __tablename__ = "attempts"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    assessment_id: Mapped[str] = mapped_column(String(64), ForeignKey("assessments.id"), index=True)
    learner_id: Mapped[int] = mapped_column(Integer, index=True)
    status: Mapped[str] = mapped_column(String(16), default="IN_PROGRESS")  # IN_PROGRESS | COMPLETED | EXPIRED
    started_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    __table_args__ = (Index("ix_attempts_learner_assessment_status", "learner_id", "assessment_id", "status"),)

class AttemptAnswerRow(Base):
    __tablename__ = "attempt_answers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[str] = mapped_column(String(64), ForeignKey("attempts.id"), index=True)
    question_id: Mapped[str] = mapped_column(String(64))
    answer_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_option_ids_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON list
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question"),)
