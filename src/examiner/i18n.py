from __future__ import annotations

STRINGS: dict[str, dict[str, str]] = {
    "choose_assessment": {"en": "Choose an assessment:", "ar": "اختر اختبارًا:"},
    "no_assessments": {"en": "No assessments are available right now.", "ar": "لا توجد اختبارات متاحة حاليًا."},
    "questions_count": {"en": "Questions: {n}", "ar": "عدد الأسئلة: {n}"},
    "time_limit": {"en": "Time limit: {n} min", "ar": "الوقت المحدد: {n} دقيقة"},
    "untimed": {"en": "No time limit", "ar": "بدون وقت محدد"},
    "passing_score": {"en": "Passing score: {n}%", "ar": "درجة النجاح: {n}%"},
    "begin": {"en": "Start assessment", "ar": "ابدأ الاختبار"},
    "question_of": {"en": "Question {i} of {n}", "ar": "السؤال {i} من {n}"},
    "answered_of": {"en": "Answered {i} of {n}", "ar": "تمت الإجابة على {i} من {n}"},
    "type_answer": {"en": "Send your answer as a message.", "ar": "أرسل إجابتك في رسالة."},
    "type_code": {"en": "Send your code as a message.", "ar": "أرسل الكود في رسالة."},
    "your_answer": {"en": "Your answer:", "ar": "إجابتك:"},
    "prev": {"en": "◀️ Previous", "ar": "◀️ السابق"},
    "next": {"en": "Next ▶️", "ar": "التالي ▶️"},
    "submit": {"en": "✅ Submit", "ar": "✅ إرسال"},
    "confirm_submit": {
        "en": "Submit your answers? You will not be able to change them afterwards.",
        "ar": "هل تريد إرسال إجاباتك؟ لن تتمكن من تعديلها بعد ذلك.",
    },
    "unanswered_warning": {"en": "{n} question(s) are still unanswered.", "ar": "لا يزال {n} سؤال بدون إجابة."},
    "yes_submit": {"en": "Yes, submit", "ar": "نعم، أرسل"},
    "keep_working": {"en": "Keep working", "ar": "متابعة الحل"},
    "submitting": {"en": "Submitting your answers…", "ar": "جارٍ إرسال إجاباتك…"},
    "loading": {"en": "Loading…", "ar": "جارٍ التحميل…"},
    "submitted": {"en": "Your answers have been submitted.", "ar": "تم إرسال إجاباتك."},
    "score": {"en": "Score: {n}%", "ar": "النتيجة: {n}%"},
    "correct_count": {"en": "Correct: {i} of {n}", "ar": "الإجابات الصحيحة: {i} من {n}"},
    "passed": {"en": "Passed 🎉", "ar": "ناجح 🎉"},
    "failed": {"en": "Not passed this time.", "ar": "لم تنجح هذه المرة."},
    "score_later": {"en": "Your result will be published later.", "ar": "سيتم نشر نتيجتك لاحقًا."},
    "try_again": {"en": "Try again", "ar": "حاول مرة أخرى"},
    "back_to_assessment": {"en": "Back to assessment", "ar": "العودة إلى الاختبار"},
    "load_error": {"en": "Could not load the assessment.", "ar": "تعذر تحميل الاختبار."},
    "retry": {"en": "🔄 Retry", "ar": "🔄 إعادة المحاولة"},
    "save_failed": {
        "en": "Could not save your answer. It will be sent again when you move on or submit.",
        "ar": "تعذر حفظ إجابتك. سيتم إرسالها مجددًا عند الانتقال أو الإرسال.",
    },
    "submit_failed": {
        "en": "Submission failed: {detail}\nYour answers are kept. Try submitting again.",
        "ar": "فشل الإرسال: {detail}\nإجاباتك محفوظة. حاول الإرسال مرة أخرى.",
    },
    "start_failed": {"en": "Could not start the attempt: {detail}", "ar": "تعذر بدء المحاولة: {detail}"},
    "resume_failed": {
        "en": "Could not resume your previous attempt. You can start a new one.",
        "ar": "تعذر استئناف محاولتك السابقة. يمكنك بدء محاولة جديدة.",
    },
    "resumed": {"en": "Welcome back! Your attempt was resumed.", "ar": "مرحبًا بعودتك! تم استئناف محاولتك."},
    "timeout": {"en": "⏰ Time is up. Submitting your answers…", "ar": "⏰ انتهى الوقت. جارٍ إرسال إجاباتك…"},
    "no_session": {"en": "Open an assessment first with /start.", "ar": "افتح اختبارًا أولًا باستخدام /start."},
    "read_only": {"en": "Answers can no longer be changed.", "ar": "لم يعد بالإمكان تعديل الإجابات."},
    "wrong_answer_kind": {"en": "Use the buttons to answer this question.", "ar": "استخدم الأزرار للإجابة على هذا السؤال."},
    "token_saved": {"en": "API token saved.", "ar": "تم حفظ رمز الوصول."},
    "token_usage": {"en": "Usage: /token <value>", "ar": "الاستخدام: /token <value>"},
    "cancelled": {"en": "Closed. Your progress is kept on the server.", "ar": "تم الإغلاق. تقدمك محفوظ على الخادم."},
}

def t(key: str, lang: str, **kwargs: object) -> str:
    text = STRINGS.get(key, {}).get(lang, STRINGS.get(key, {}).get("en", key))
    if kwargs:
        text = text.format(**kwargs)
    return text
