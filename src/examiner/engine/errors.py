from __future__ import annotations


class EngineError(RuntimeError):
    pass


class WrongAnswerShape(EngineError):
    def __init__(self, question_id: str, question_type: str, detail: str) -> None:
        self.question_id = question_id
        self.question_type = question_type
        super().__init__(f"{question_id} ({question_type}): {detail}")


class ReadOnlyError(EngineError):
    pass


class InvalidTransition(EngineError):
    pass
