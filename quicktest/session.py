"""
Client-side controller for one quiz attempt.

Phases::

    idle -> loading -> answering -> finishing -> finished
              |                       |
              +-> idle (start failed) +-> answering (finish failed)

Local state (answers, marks, active question) changes synchronously inside
each call. Remote writes that accompany it run as detached tasks and only
report errors; they never roll local state back. The scorer is the single
point where the remote side becomes authoritative.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Protocol, Sequence, Set

from .answer_store import AnswerStore
from .config import QuickTestSettings
from .errors import (
    InputError,
    QuickTestError,
    SessionStartError,
    SessionStateError,
    TransientPersistenceError,
)
from .schemas import AttemptResult, QuestionOut
from .timer import Timer

logger = logging.getLogger(__name__)

MODE_QUICK = "test_rapido"
MODE_TRAINING = "entrenamiento"

KEY_LABELS = {"a": "A", "b": "B", "c": "C", "d": "D"}
COMMIT_KEY = "enter"


class Phase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ANSWERING = "answering"
    FINISHING = "finishing"
    FINISHED = "finished"


class QuestionBank(Protocol):
    async def sample(
        self, limit: int, topic_id: Optional[int] = None, subject_id: Optional[int] = None
    ) -> List[QuestionOut]:
        ...


class AttemptOpener(Protocol):
    async def open(self, mode: str, question_ids: Sequence[int] = ()) -> int:
        ...


class AnswerPersister(Protocol):
    async def upsert_answer(self, attempt_id: int, question_id: int, selected: str) -> None:
        ...


class MarkPersister(Protocol):
    async def upsert_mark(self, attempt_id: int, question_id: int, marked: bool) -> None:
        ...


class Scorer(Protocol):
    async def close(self, attempt_id: int) -> AttemptResult:
        ...


class Explainer(Protocol):
    async def explain(self, attempt_id: int, question_id: int) -> str:
        ...


ConfirmHook = Callable[[int], bool]


def decline_incomplete(unanswered: int) -> bool:
    return False


def _time_is_up(unanswered: int) -> bool:
    return True


def _as_error(exc: Exception, default: str) -> QuickTestError:
    if isinstance(exc, QuickTestError):
        return exc if exc.message else type(exc)(default, exc.status_code)
    return QuickTestError(str(exc) or default)


@dataclass
class SessionContext:
    """Everything an AttemptSession talks to, handed over at construction."""

    bank: QuestionBank
    opener: AttemptOpener
    answers: AnswerPersister
    marks: MarkPersister
    scorer: Scorer
    settings: QuickTestSettings
    explainer: Optional[Explainer] = None
    # Asked with the number of unanswered questions before finishing early.
    confirm_incomplete: ConfirmHook = decline_incomplete
    on_error: Optional[Callable[[QuickTestError], None]] = None

    @classmethod
    def from_backend(cls, backend, settings: QuickTestSettings, **kwargs) -> "SessionContext":
        return cls(
            bank=backend,
            opener=backend,
            answers=backend,
            marks=backend,
            scorer=backend,
            explainer=backend,
            settings=settings,
            **kwargs,
        )


class AttemptSession:
    def __init__(self, context: SessionContext):
        self.context = context
        self.phase = Phase.IDLE
        self.questions: List[QuestionOut] = []
        self.answers = AnswerStore()
        self.attempt_id: Optional[int] = None
        self.training = False
        self.active_index = 0
        self.result: Optional[AttemptResult] = None
        self.error = ""
        self.errors: List[QuickTestError] = []
        self.explanations: Dict[int, str] = {}
        self.tutor_loading: Dict[int, bool] = {}
        self.timer = Timer(
            context.settings.question_time_budget,
            period=context.settings.tick_period,
            on_expire=self._on_time_up,
        )
        self._tasks: Set[asyncio.Task] = set()

    # ---- views ------------------------------------------------------------

    @property
    def active_question(self) -> Optional[QuestionOut]:
        if 0 <= self.active_index < len(self.questions):
            return self.questions[self.active_index]
        return None

    @property
    def time_left(self) -> int:
        return self.timer.remaining

    @property
    def answered_count(self) -> int:
        return self.answers.answered_count

    @property
    def progress(self) -> int:
        if not self.questions:
            return 0
        return round(self.answered_count / len(self.questions) * 100)

    @property
    def is_last(self) -> bool:
        return self.active_index >= len(self.questions) - 1

    def is_marked(self, question_id: int) -> bool:
        return self.answers.is_marked(question_id)

    def _question(self, question_id: int) -> Optional[QuestionOut]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    # ---- lifecycle --------------------------------------------------------

    def _set_phase(self, phase: Phase) -> None:
        logger.debug("Session phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def _clear(self) -> None:
        self.timer.cancel()
        self.timer.reset()
        self.questions = []
        self.answers.clear()
        self.attempt_id = None
        self.active_index = 0
        self.result = None
        self.error = ""
        self.explanations = {}
        self.tutor_loading = {}

    async def start(
        self,
        count: int,
        topic_id: Optional[int] = None,
        subject_id: Optional[int] = None,
        training: bool = False,
    ) -> None:
        if self.phase in (Phase.LOADING, Phase.ANSWERING, Phase.FINISHING):
            raise SessionStateError(f"cannot start a new attempt while {self.phase.value}")
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InputError("count must be a positive integer")

        self._clear()
        self.training = training
        self._set_phase(Phase.LOADING)
        try:
            questions = await self.context.bank.sample(count, topic_id=topic_id, subject_id=subject_id)
            if not questions:
                raise SessionStartError("No hay preguntas disponibles para este filtro")
            mode = MODE_TRAINING if training else MODE_QUICK
            attempt_id = await self.context.opener.open(mode, [q.id for q in questions])
        except Exception as exc:
            self.error = _as_error(exc, "Error iniciando el test").message
            self._set_phase(Phase.IDLE)
            logger.warning("Could not start attempt: %s", self.error)
            raise SessionStartError(self.error) from exc

        self.questions = list(questions)
        self.attempt_id = attempt_id
        self.active_index = 0
        self.timer.reset()
        self.timer.start()
        self._set_phase(Phase.ANSWERING)
        logger.info("Attempt %s started with %d questions", attempt_id, len(self.questions))

    def reset(self) -> None:
        """Drop the current attempt locally and return to idle."""
        self._clear()
        self.training = False
        self._set_phase(Phase.IDLE)

    async def close(self) -> None:
        self.timer.cancel()
        await self.drain()

    async def drain(self) -> None:
        """Wait for every detached write and tutor request in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---- answering --------------------------------------------------------

    def choose(self, question_id: int, label: str) -> bool:
        if self.phase is not Phase.ANSWERING or self.attempt_id is None:
            return False
        question = self._question(question_id)
        if question is None or not question.has_label(label):
            return False

        self.answers.choose(question_id, label)
        self._spawn(self._persist_answer(self.attempt_id, question_id, label))
        return True

    async def _persist_answer(self, attempt_id: int, question_id: int, label: str) -> None:
        try:
            await self.context.answers.upsert_answer(attempt_id, question_id, label)
        except Exception as exc:
            self._report(TransientPersistenceError(_as_error(exc, "answer not saved").message))
        # Training mode explains after the write so the tutor sees the selection.
        if self.training:
            await self.ask_tutor(question_id)

    def toggle_mark(self, question_id: int) -> Optional[bool]:
        if self.phase is not Phase.ANSWERING or self.attempt_id is None:
            return None
        if self._question(question_id) is None:
            return None

        marked = self.answers.toggle_mark(question_id)
        self._spawn(self._persist_mark(self.attempt_id, question_id, marked))
        return marked

    async def _persist_mark(self, attempt_id: int, question_id: int, marked: bool) -> None:
        try:
            await self.context.marks.upsert_mark(attempt_id, question_id, marked)
        except Exception as exc:
            self._report(TransientPersistenceError(_as_error(exc, "mark not saved").message))

    # ---- navigation -------------------------------------------------------

    def advance(self, direction: int = 1) -> bool:
        return self.jump_to(self.active_index + direction)

    def jump_to(self, index: int) -> bool:
        if self.phase is not Phase.ANSWERING:
            return False
        if not 0 <= index < len(self.questions):
            return False
        self.active_index = index
        self.timer.reset()
        return True

    async def commit(self) -> Optional[AttemptResult]:
        if self.phase is not Phase.ANSWERING:
            return None
        if not self.is_last:
            self.advance(1)
            return None
        return await self.finish()

    async def handle_key(self, key: str) -> bool:
        if self.phase is not Phase.ANSWERING:
            return False
        key = key.lower()
        question = self.active_question
        if question is None:
            return False
        if key in KEY_LABELS:
            return self.choose(question.id, KEY_LABELS[key])
        if key == COMMIT_KEY:
            await self.commit()
            return True
        return False

    def _on_time_up(self) -> None:
        if self.phase is not Phase.ANSWERING:
            return
        if not self.is_last:
            self.advance(1)
            return
        logger.info("Time is up on the last question of attempt %s", self.attempt_id)
        if self._begin_finish(_time_is_up):
            self._spawn(self._finish_quietly())

    # ---- finishing --------------------------------------------------------

    async def finish(self, confirm: Optional[ConfirmHook] = None) -> Optional[AttemptResult]:
        """
        Close the attempt through the scorer.

        Returns the result, or None when there is nothing to finish or the
        learner declined to finish with unanswered questions. A scorer
        failure puts the session back in ``answering`` and re-raises.
        """
        if self.phase is Phase.FINISHED:
            return self.result
        if not self._begin_finish(confirm or self.context.confirm_incomplete):
            return None
        return await self._complete_finish()

    def _begin_finish(self, confirm: ConfirmHook) -> bool:
        if self.phase is not Phase.ANSWERING or self.attempt_id is None:
            return False
        missing = self.answers.unanswered(q.id for q in self.questions)
        if missing and not confirm(len(missing)):
            logger.debug("Finish declined with %d unanswered questions", len(missing))
            return False
        self.timer.cancel()
        self._set_phase(Phase.FINISHING)
        return True

    async def _complete_finish(self) -> AttemptResult:
        try:
            result = await self.context.scorer.close(self.attempt_id)
        except Exception as exc:
            error = _as_error(exc, "Error finalizando el test")
            self.error = error.message
            self.errors.append(error)
            self._set_phase(Phase.ANSWERING)
            if self.timer.expired:
                self.timer.reset()
            self.timer.start()
            logger.warning("Could not finish attempt %s: %s", self.attempt_id, self.error)
            raise

        self.result = result
        self._set_phase(Phase.FINISHED)
        return result

    async def _finish_quietly(self) -> None:
        try:
            await self._complete_finish()
        except Exception:
            # Already recorded on the session by _complete_finish.
            pass

    # ---- tutor ------------------------------------------------------------

    async def ask_tutor(self, question_id: int) -> Optional[str]:
        if self.attempt_id is None or self.context.explainer is None:
            return None
        attempt_id = self.attempt_id
        self.tutor_loading[question_id] = True
        try:
            text = await self.context.explainer.explain(attempt_id, question_id)
        except Exception as exc:
            text = f"Error: {_as_error(exc, 'no disponible').message}"
        finally:
            if self.attempt_id == attempt_id:
                self.tutor_loading[question_id] = False

        # A reply for an attempt the learner already left is not shown.
        if self.attempt_id == attempt_id:
            self.explanations[question_id] = text
        return text

    # ---- background work --------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed", exc_info=exc)

    def _report(self, error: QuickTestError) -> None:
        logger.warning("Attempt %s: %s", self.attempt_id, error.message)
        self.error = error.message
        self.errors.append(error)
        if self.context.on_error is not None:
            self.context.on_error(error)
