import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from .errors import (
    AttemptClosedError,
    InputError,
    NotFoundError,
    QuickTestError,
    TutorUnavailableError,
    UnavailableError,
    UpstreamError,
)
from .schemas import AttemptResult, QuestionOut

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: InputError,
    404: NotFoundError,
    409: AttemptClosedError,
    422: InputError,
}


def _detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("error")
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    return response.reason_phrase


class RemoteBackend:
    """
    Client for the Quick Test backend.

    One instance covers every collaborator the attempt session needs
    (sampler, opener, answer and mark persisters, scorer, explainer). Pass
    it in through a ``SessionContext``; it is not a process-wide client.
    """

    def __init__(
        self,
        base_url: str = "",
        token: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            return await self._http.post(path, json=payload, headers=self._headers)
        except httpx.HTTPError as exc:
            raise UnavailableError(f"backend unreachable: {exc}") from exc

    async def _rpc(self, name: str, payload: Dict[str, Any]) -> Any:
        response = await self._post(f"/rpc/{name}", payload)
        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                raise UpstreamError(f"invalid response from /rpc/{name}") from exc
        message = _detail(response)
        error_cls = _STATUS_ERRORS.get(response.status_code)
        if error_cls is not None:
            raise error_cls(message)
        raise UpstreamError(message, status_code=response.status_code)

    async def sample(
        self,
        limit: int,
        topic_id: Optional[int] = None,
        subject_id: Optional[int] = None,
    ) -> List[QuestionOut]:
        data = await self._rpc(
            "get_random_questions",
            {"topic_id": topic_id, "subject_id": subject_id, "limit": limit},
        )
        try:
            return [QuestionOut.model_validate(item) for item in data or []]
        except (TypeError, ValidationError) as exc:
            raise UpstreamError(f"invalid question payload: {exc}") from exc

    async def open(self, mode: str, question_ids: Sequence[int] = ()) -> int:
        data = await self._rpc("start_attempt", {"mode": mode, "question_ids": list(question_ids)})
        try:
            return int(data["attempt_id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamError("invalid start_attempt response") from exc

    async def upsert_answer(self, attempt_id: int, question_id: int, selected: str) -> None:
        await self._rpc(
            "submit_answer",
            {"attempt_id": attempt_id, "question_id": question_id, "selected": selected},
        )

    async def upsert_mark(self, attempt_id: int, question_id: int, marked: bool) -> None:
        await self._rpc(
            "mark_answer",
            {"attempt_id": attempt_id, "question_id": question_id, "marked": marked},
        )

    async def close(self, attempt_id: int) -> AttemptResult:
        data = await self._rpc("finish_attempt", {"attempt_id": attempt_id})
        try:
            return AttemptResult.model_validate(data)
        except ValidationError as exc:
            raise UpstreamError(f"invalid attempt result: {exc}") from exc

    async def explain(self, attempt_id: int, question_id: int) -> str:
        response = await self._post(
            "/api/tutor", {"attempt_id": attempt_id, "question_id": question_id}
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if response.is_success and data.get("ok") and data.get("text"):
            return data["text"]

        message = data.get("error") or "Error del tutor"
        status = response.status_code
        if response.is_success:
            raise UpstreamError(message)
        if status == 503:
            raise TutorUnavailableError(message)
        error_cls = _STATUS_ERRORS.get(status)
        if error_cls is not None:
            raise error_cls(message)
        if status == 500:
            raise QuickTestError(message)
        raise UpstreamError(message, status_code=status)
