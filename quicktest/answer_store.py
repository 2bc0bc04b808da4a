from typing import Dict, Iterable, List, Optional


class AnswerStore:
    """In-memory answers and review marks for the open attempt. Last write wins."""

    def __init__(self):
        self._selected: Dict[int, str] = {}
        self._marked: Dict[int, bool] = {}

    def choose(self, question_id: int, label: str) -> None:
        self._selected[question_id] = label

    def selected(self, question_id: int) -> Optional[str]:
        return self._selected.get(question_id)

    def toggle_mark(self, question_id: int) -> bool:
        value = not self._marked.get(question_id, False)
        self._marked[question_id] = value
        return value

    def is_marked(self, question_id: int) -> bool:
        return self._marked.get(question_id, False)

    @property
    def answered_count(self) -> int:
        return len(self._selected)

    def unanswered(self, question_ids: Iterable[int]) -> List[int]:
        return [qid for qid in question_ids if qid not in self._selected]

    def as_dict(self) -> Dict[int, str]:
        return dict(self._selected)

    def clear(self) -> None:
        self._selected.clear()
        self._marked.clear()
