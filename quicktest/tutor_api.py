import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .auth import get_optional_user_id
from .deps import get_tutor
from .errors import QuickTestError
from .schemas import TutorRequest, TutorResponse
from .tutor import TutorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tutor"])


def _envelope(status_code: int, **body) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=TutorResponse(**body).model_dump(exclude_none=True),
    )


@router.post("/tutor", response_model=TutorResponse)
async def tutor(
    payload: TutorRequest,
    service: TutorService = Depends(get_tutor),
    user_id: Optional[int] = Depends(get_optional_user_id),
):
    try:
        text = await service.explain(payload.attempt_id, payload.question_id, user_id=user_id)
    except QuickTestError as exc:
        return _envelope(exc.status_code, ok=False, error=exc.message)
    except Exception as exc:  # the envelope must hold for any failure
        logger.exception("Tutor request failed")
        return _envelope(500, ok=False, error=str(exc) or "server error")
    return _envelope(200, ok=True, text=text)
