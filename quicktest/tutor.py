"""
AI tutor explanations.

``TutorService.explain`` builds a fixed prompt for one question of one
attempt, asks the chat-completions shape first and the single-input
responses shape second, and upserts the text into the explanation cache.

Fallback rule for each upstream shape:
  - explicit provider error  -> stop, raise UpstreamError with that message
  - no usable text / timeout -> try the next shape
"""

import logging
from typing import Optional, Protocol, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from .errors import InputError, TransientPersistenceError, TutorUnavailableError, UpstreamError
from .llm_client import LLMReply
from .repository import QuizRepository
from .schemas import QuestionContext

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "Eres un tutor de oposiciones. Responde en español claro y conciso. "
    "4-6 líneas máximo. No repitas la pregunta."
)

NO_TEXT_MESSAGE = "El tutor no devolvió texto. Intenta de nuevo en unos minutos."


class QuestionReader(Protocol):
    async def read_question_context(self, attempt_id: int, question_id: int) -> QuestionContext:
        ...


class ExplanationCache(Protocol):
    async def upsert_explanation(
        self, attempt_id: int, question_id: int, text: str, user_id: Optional[int] = None
    ) -> None:
        ...

    async def get_explanation(self, attempt_id: int, question_id: int) -> Optional[str]:
        ...


class TextDeriver(Protocol):
    async def chat_completion(self, system: str, user: str) -> LLMReply:
        ...

    async def responses(self, prompt: str) -> LLMReply:
        ...


class ThreadedQuizStore:
    """Async face of QuizRepository; each call runs in the threadpool."""

    def __init__(self, repository: QuizRepository):
        self.repository = repository

    async def read_question_context(self, attempt_id: int, question_id: int) -> QuestionContext:
        return await run_in_threadpool(
            self.repository.read_question_context, attempt_id, question_id
        )

    async def upsert_explanation(
        self, attempt_id: int, question_id: int, text: str, user_id: Optional[int] = None
    ) -> None:
        try:
            await run_in_threadpool(
                self.repository.upsert_explanation, attempt_id, question_id, text, user_id
            )
        except SQLAlchemyError as exc:
            raise TransientPersistenceError(f"explanation cache write failed: {exc}") from exc

    async def get_explanation(self, attempt_id: int, question_id: int) -> Optional[str]:
        return await run_in_threadpool(self.repository.get_explanation, attempt_id, question_id)


def render_options(context: QuestionContext) -> str:
    return "\n".join(
        f"{o.label}. {o.text}" for o in sorted(context.options, key=lambda o: o.label)
    )


def build_prompt(context: QuestionContext) -> Tuple[str, str]:
    """Return ``(system, user)``; identical input gives identical output."""
    lines = [
        f"Pregunta: {context.stem}",
        "Opciones:",
        render_options(context),
        f"Respuesta correcta: {context.correct_option}",
    ]
    if context.selected:
        lines.append(f"Respuesta del alumno: {context.selected}")
    lines.append(f"Tema: {context.topic or '(Desconocido)'}.")
    lines.append(
        "Explica por qué esa opción es correcta y por qué las otras no lo son, brevemente."
    )
    return SYSTEM_INSTRUCTION, "\n".join(lines).strip()


class TutorService:
    def __init__(self, reader: QuestionReader, cache: ExplanationCache, llm: TextDeriver):
        self.reader = reader
        self.cache = cache
        self.llm = llm

    async def cached(self, attempt_id: int, question_id: int) -> Optional[str]:
        return await self.cache.get_explanation(attempt_id, question_id)

    async def explain(
        self,
        attempt_id: Optional[int],
        question_id: Optional[int],
        user_id: Optional[int] = None,
        use_cache: bool = False,
    ) -> str:
        if not attempt_id or not question_id:
            raise InputError("missing attempt_id or question_id")

        if use_cache:
            text = await self.cached(attempt_id, question_id)
            if text:
                return text

        context = await self.reader.read_question_context(attempt_id, question_id)
        system, user = build_prompt(context)
        text = await self._derive(system, user)

        try:
            await self.cache.upsert_explanation(attempt_id, question_id, text, user_id)
        except TransientPersistenceError as exc:
            logger.warning(
                "Could not cache explanation for attempt %s question %s: %s",
                attempt_id, question_id, exc.message,
            )
        return text

    async def _derive(self, system: str, user: str) -> str:
        reply = await self.llm.chat_completion(system, user)
        text = self._accept(reply, "chat")
        if text:
            return text

        reply = await self.llm.responses(f"{system}\n\n{user}")
        text = self._accept(reply, "responses")
        if text:
            return text

        raise TutorUnavailableError(NO_TEXT_MESSAGE)

    @staticmethod
    def _accept(reply: LLMReply, shape: str) -> Optional[str]:
        if reply.error:
            logger.warning("Upstream %s reported an error (%s): %s", shape, reply.status, reply.error)
            raise UpstreamError(reply.error, status_code=reply.status or UpstreamError.status_code)
        if not reply.text:
            logger.info("Upstream %s returned no text; falling through", shape)
        return reply.text
