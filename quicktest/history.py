from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends

from .auth import get_current_user_id
from .deps import get_repository
from .models import Attempt
from .repository import QuizRepository
from .schemas import AttemptRow, HistoryKpis, HistoryResponse

router = APIRouter(prefix="/api", tags=["history"])


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_row(attempt: Attempt) -> AttemptRow:
    return AttemptRow(
        id=attempt.id,
        mode=attempt.mode.value if attempt.mode is not None else None,
        started_at=_aware(attempt.started_at),
        finished_at=_aware(attempt.finished_at),
        total=attempt.total,
        correct=attempt.correct,
        score=attempt.score,
    )


def compute_kpis(rows: List[AttemptRow], now: Optional[datetime] = None) -> HistoryKpis:
    now = now or datetime.now(timezone.utc)
    scored = [r.score for r in rows if r.score is not None]
    avg = round(sum(scored) / len(scored)) if scored else 0
    cutoff = now - timedelta(days=7)
    last7 = sum(1 for r in rows if r.started_at is not None and r.started_at > cutoff)
    return HistoryKpis(tests=len(rows), avg=avg, last7=last7)


@router.get("/attempts", response_model=HistoryResponse)
def attempt_history(
    repository: QuizRepository = Depends(get_repository),
    user_id: int = Depends(get_current_user_id),
):
    rows = [_to_row(a) for a in repository.list_attempts(user_id)]
    return HistoryResponse(attempts=rows, kpis=compute_kpis(rows))
