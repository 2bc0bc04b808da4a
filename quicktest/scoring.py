from typing import Dict, Iterable, List, Optional, Tuple

from .schemas import AttemptResult, TopicBreakdown

UNKNOWN_TOPIC = "Sin tema"


def simple_percent(total: int, correct: int) -> float:
    if total <= 0:
        return 0.0
    return round((correct / total) * 100.0, 2)


def score_attempt(rows: Iterable[Tuple[Optional[str], str, Optional[str]]]) -> AttemptResult:
    """
    Grade one attempt.

    Each row is ``(selected, correct_option, topic_name)`` for one question
    of the attempt. Unanswered questions (``selected is None``) count towards
    ``total`` and are never correct.
    """
    total = 0
    correct = 0
    topic_total: Dict[str, int] = {}
    topic_correct: Dict[str, int] = {}

    for selected, correct_option, topic in rows:
        name = topic or UNKNOWN_TOPIC
        total += 1
        topic_total[name] = topic_total.get(name, 0) + 1
        if selected is not None and selected == correct_option:
            correct += 1
            topic_correct[name] = topic_correct.get(name, 0) + 1

    by_topic: List[TopicBreakdown] = [
        TopicBreakdown(topic=name, correct=topic_correct.get(name, 0), total=count)
        for name, count in sorted(topic_total.items())
    ]

    return AttemptResult(
        score=simple_percent(total, correct),
        correct=correct,
        total=total,
        by_topic=by_topic,
    )
