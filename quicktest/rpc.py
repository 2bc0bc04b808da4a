from typing import List, Optional

from fastapi import APIRouter, Depends

from .auth import get_optional_user_id
from .config import QuickTestSettings
from .deps import get_repository, get_settings_dep
from .repository import QuizRepository
from .schemas import (
    AckResponse,
    AttemptResult,
    FinishAttemptRequest,
    MarkAnswerRequest,
    QuestionOut,
    SampleRequest,
    StartAttemptRequest,
    StartAttemptResponse,
    SubmitAnswerRequest,
)

router = APIRouter(prefix="/rpc", tags=["rpc"])


def clamp(n: int, minimum: int, maximum: int) -> int:
    if n < minimum:
        return minimum
    if n > maximum:
        return maximum
    return n


@router.post("/get_random_questions", response_model=List[QuestionOut])
def get_random_questions(
    payload: SampleRequest,
    repository: QuizRepository = Depends(get_repository),
    settings: QuickTestSettings = Depends(get_settings_dep),
):
    # Fewer than `limit` questions under the filter is not an error.
    return repository.sample_questions(
        limit=clamp(payload.limit, 1, settings.max_questions),
        topic_id=payload.topic_id,
        subject_id=payload.subject_id,
    )


@router.post("/start_attempt", response_model=StartAttemptResponse)
def start_attempt(
    payload: StartAttemptRequest,
    repository: QuizRepository = Depends(get_repository),
    user_id: Optional[int] = Depends(get_optional_user_id),
):
    attempt_id = repository.open_attempt(payload.mode, payload.question_ids, user_id=user_id)
    return StartAttemptResponse(attempt_id=attempt_id)


@router.post("/submit_answer", response_model=AckResponse)
def submit_answer(
    payload: SubmitAnswerRequest,
    repository: QuizRepository = Depends(get_repository),
    user_id: Optional[int] = Depends(get_optional_user_id),
):
    repository.upsert_answer(payload.attempt_id, payload.question_id, payload.selected, user_id=user_id)
    return AckResponse()


@router.post("/mark_answer", response_model=AckResponse)
def mark_answer(
    payload: MarkAnswerRequest,
    repository: QuizRepository = Depends(get_repository),
    user_id: Optional[int] = Depends(get_optional_user_id),
):
    repository.upsert_mark(payload.attempt_id, payload.question_id, payload.marked, user_id=user_id)
    return AckResponse()


@router.post("/finish_attempt", response_model=AttemptResult)
def finish_attempt(
    payload: FinishAttemptRequest,
    repository: QuizRepository = Depends(get_repository),
    user_id: Optional[int] = Depends(get_optional_user_id),
):
    return repository.close_attempt(payload.attempt_id, user_id=user_id)
