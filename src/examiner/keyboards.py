from __future__ import annotations
from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder
from .engine.types import Assessment, ChoiceAnswer, Question
from .i18n import t

def kb_assessments(assessments: list[Assessment]) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    for a in assessments:
        b.button(text=a.title[:60], callback_data=f"open:{a.id}")
    b.adjust(1)
    return b.as_markup()

def kb_begin(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("begin", ui_lang), callback_data="begin")
    b.adjust(1)
    return b.as_markup()

def kb_question(
    question: Question,
    draft: object,
    *,
    is_first: bool,
    is_last: bool,
    ui_lang: str,
) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    selected = draft.option_ids if isinstance(draft, ChoiceAnswer) else ()
    sizes: list[int] = []
    for idx, opt in enumerate(question.options):
        mark = "● " if opt.id in selected else "○ "
        b.button(text=mark + opt.label[:60], callback_data=f"pick:{idx}")
        sizes.append(1)
    nav = 0
    if not is_first:
        b.button(text=t("prev", ui_lang), callback_data="nav:prev")
        nav += 1
    if not is_last:
        b.button(text=t("next", ui_lang), callback_data="nav:next")
        nav += 1
    if nav:
        sizes.append(nav)
    # finishing early is allowed from any question
    b.button(text=t("submit", ui_lang), callback_data="submit")
    b.adjust(*sizes, 1)
    return b.as_markup()

def kb_confirm(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("yes_submit", ui_lang), callback_data="submit:yes")
    b.button(text=t("keep_working", ui_lang), callback_data="submit:no")
    b.adjust(2)
    return b.as_markup()

def kb_retry(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text=t("retry", ui_lang), callback_data="retry")
    b.adjust(1)
    return b.as_markup()

def kb_reopen(assessment_id: str, ui_lang: str, *, failed: bool = False) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    key = "try_again" if failed else "back_to_assessment"
    b.button(text=t(key, ui_lang), callback_data=f"open:{assessment_id}")
    b.adjust(1)
    return b.as_markup()
