from __future__ import annotations

from enum import Enum

from aiogram.types import InlineKeyboardMarkup

from .engine.types import (
    Assessment,
    ChoiceAnswer,
    Phase,
    Question,
    QuestionType,
    SessionEvent,
    SessionView,
    TextAnswer,
)
from .i18n import t
from .keyboards import kb_assessments, kb_begin, kb_confirm, kb_question, kb_reopen, kb_retry

Rendered = tuple[str, InlineKeyboardMarkup | None]

LOW_TIME_S = 60


class Affordance(str, Enum):
    SINGLE_CHOICE = "single_choice"
    TEXT = "text"
    CODE = "code"


def affordance_for(question: Question) -> Affordance:
    if question.type.is_choice:
        return Affordance.SINGLE_CHOICE
    if question.type == QuestionType.CODE:
        return Affordance.CODE
    return Affordance.TEXT


# ---------------- MarkdownV2 escape ----------------
def esc_md2(text: str | None) -> str:
    if text is None:
        return ""
    text = text.replace("\\", "\\\\")
    for ch in r"_*[]()~`>#+-=|{}.!":
        text = text.replace(ch, "\\" + ch)
    return text

def esc_pre(text: str | None) -> str:
    # inside ``` blocks only backslash and backtick are special
    return (text or "").replace("\\", "\\\\").replace("`", "\\`")


def format_time(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes}:{secs:02d}"


def timer_line(remaining_seconds: int | None) -> str | None:
    if remaining_seconds is None:
        return None
    prefix = "⚠️" if remaining_seconds < LOW_TIME_S else "⏱"
    return f"{prefix} {format_time(remaining_seconds)}"


def render_assessment_list(assessments: list[Assessment], ui_lang: str) -> Rendered:
    if not assessments:
        return esc_md2(t("no_assessments", ui_lang)), None
    return esc_md2(t("choose_assessment", ui_lang)), kb_assessments(assessments)


def render_intro(assessment: Assessment, ui_lang: str) -> Rendered:
    lines = [f"*{esc_md2(assessment.title)}*"]
    if assessment.description:
        lines.append(esc_md2(assessment.description))
    lines.append("")
    lines.append(esc_md2(t("questions_count", ui_lang, n=assessment.question_count)))
    if assessment.is_timed:
        lines.append(esc_md2(t("time_limit", ui_lang, n=assessment.time_limit_minutes)))
    else:
        lines.append(esc_md2(t("untimed", ui_lang)))
    lines.append(esc_md2(t("passing_score", ui_lang, n=assessment.passing_score)))
    return "\n".join(lines), kb_begin(ui_lang)


def _header(view: SessionView, ui_lang: str) -> list[str]:
    lines: list[str] = []
    if view.assessment is not None:
        lines.append(f"*{esc_md2(view.assessment.title)}*")
    status = t("question_of", ui_lang, i=view.position, n=view.total)
    timer = timer_line(view.remaining_seconds)
    if timer:
        status = f"{status} · {timer}"
    lines.append(esc_md2(status))
    return lines


def render_question(view: SessionView, ui_lang: str) -> Rendered:
    question = view.question
    if question is None:
        return render_error(view, ui_lang)
    lines = _header(view, ui_lang)
    lines.append("")
    kind = affordance_for(question)
    if kind == Affordance.CODE:
        lines.append(f"```\n{esc_pre(question.prompt)}\n```")
    else:
        lines.append(esc_md2(question.prompt))
    lines.append("")
    if kind == Affordance.SINGLE_CHOICE:
        if isinstance(view.draft, ChoiceAnswer):
            picked = question.option(view.draft.option_ids[0]) if view.draft.option_ids else None
            if picked:
                lines.append(f"{esc_md2(t('your_answer', ui_lang))} {esc_md2(picked.label)}")
    else:
        lines.append(f"_{esc_md2(t('type_code' if kind == Affordance.CODE else 'type_answer', ui_lang))}_")
        if isinstance(view.draft, TextAnswer) and view.draft.text:
            lines.append(esc_md2(t("your_answer", ui_lang)))
            if kind == Affordance.CODE:
                lines.append(f"```\n{esc_pre(view.draft.text)}\n```")
            else:
                lines.append(esc_md2(view.draft.text))
    lines.append(esc_md2(t("answered_of", ui_lang, i=view.answered, n=view.total)))
    markup = kb_question(
        question,
        view.draft,
        is_first=view.is_first,
        is_last=view.is_last,
        ui_lang=ui_lang,
    )
    return "\n".join(lines), markup


def render_confirm(view: SessionView, ui_lang: str) -> Rendered:
    lines = _header(view, ui_lang)
    lines.append("")
    lines.append(esc_md2(t("confirm_submit", ui_lang)))
    missing = view.total - view.answered
    if missing > 0:
        lines.append(esc_md2(t("unanswered_warning", ui_lang, n=missing)))
    return "\n".join(lines), kb_confirm(ui_lang)


def _score_text(score: float) -> str:
    return f"{score:.0f}" if float(score).is_integer() else f"{score:.1f}"


def render_result(view: SessionView, ui_lang: str) -> Rendered:
    assessment = view.assessment
    result = view.result
    lines: list[str] = []
    if assessment is not None:
        lines.append(f"*{esc_md2(assessment.title)}*")
    lines.append(esc_md2(t("submitted", ui_lang)))
    failed = False
    show_score = assessment is None or assessment.show_score_immediately
    if result is not None and result.score is not None and show_score:
        lines.append(esc_md2(t("score", ui_lang, n=_score_text(result.score))))
        if result.correct_count is not None and result.total:
            lines.append(esc_md2(t("correct_count", ui_lang, i=result.correct_count, n=result.total)))
        if result.passed is not None:
            failed = not result.passed
            lines.append(esc_md2(t("passed" if result.passed else "failed", ui_lang)))
    else:
        lines.append(esc_md2(t("score_later", ui_lang)))
    if assessment is None:
        return "\n".join(lines), None
    return "\n".join(lines), kb_reopen(assessment.id, ui_lang, failed=failed)


def render_error(view: SessionView, ui_lang: str) -> Rendered:
    lines = [esc_md2(t("load_error", ui_lang))]
    if view.last_notice is not None and view.last_notice.detail:
        lines.append(esc_md2(view.last_notice.detail))
    return "\n".join(lines), kb_retry(ui_lang)


def render_view(view: SessionView, ui_lang: str) -> Rendered:
    if view.phase == Phase.ERROR:
        return render_error(view, ui_lang)
    if view.phase == Phase.FINISHED:
        return render_result(view, ui_lang)
    if view.phase in (Phase.SUBMITTING, Phase.RESUMING):
        key = "submitting" if view.phase == Phase.SUBMITTING else "loading"
        return esc_md2(t(key, ui_lang)), None
    if view.phase == Phase.ACTIVE:
        if view.awaiting_confirmation:
            return render_confirm(view, ui_lang)
        return render_question(view, ui_lang)
    if view.assessment is not None:
        return render_intro(view.assessment, ui_lang)
    return render_error(view, ui_lang)


def render_notice(event: SessionEvent, ui_lang: str) -> str | None:
    """Short text for events the learner should see next to the question."""
    if event.kind == "save_failed":
        return esc_md2(t("save_failed", ui_lang))
    if event.kind == "submit_failed":
        return esc_md2(t("submit_failed", ui_lang, detail=event.detail or "-"))
    if event.kind == "start_failed":
        return esc_md2(t("start_failed", ui_lang, detail=event.detail or "-"))
    if event.kind == "resume_failed":
        return esc_md2(t("resume_failed", ui_lang))
    if event.kind == "resumed":
        return esc_md2(t("resumed", ui_lang))
    if event.kind == "timeout":
        return esc_md2(t("timeout", ui_lang))
    return None
