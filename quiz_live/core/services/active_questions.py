"""In-memory record of the question running in each class."""

from __future__ import annotations

from quiz_live.core.models import ActiveQuestion


class ActiveQuestionBoard:
    """Holds at most one active question per class."""

    def __init__(self) -> None:
        self._active: dict[str, ActiveQuestion] = {}

    def set(self, active: ActiveQuestion) -> None:
        self._active[active.class_id] = active

    def get(self, class_id: str) -> ActiveQuestion | None:
        return self._active.get(class_id)

    def get_matching(self, class_id: str, question_id: str | None) -> ActiveQuestion | None:
        """Return the active question only if it is ``question_id``."""
        active = self._active.get(class_id)
        if active is None or question_id is None or active.question.id != question_id:
            return None
        return active

    def clear(self, class_id: str) -> ActiveQuestion | None:
        return self._active.pop(class_id, None)

    def clear_if(self, class_id: str, question_id: str) -> bool:
        if self.get_matching(class_id, question_id) is None:
            return False
        del self._active[class_id]
        return True
