import logging
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from .errors import AttemptClosedError, InputError, NotFoundError
from .models import (
    Attempt,
    AttemptAnswer,
    AttemptModeDB,
    Question,
    TutorExplanation,
    utcnow,
)
from .schemas import AttemptResult, OptionOut, QuestionContext, QuestionOut
from .scoring import score_attempt

logger = logging.getLogger(__name__)


def _map_question(q: Question) -> QuestionOut:
    return QuestionOut(
        id=q.id,
        stem=q.stem,
        type=q.qtype.value if q.qtype is not None else "mcq",
        difficulty=q.difficulty or 1,
        subject=q.subject.name if q.subject is not None else None,
        topic=q.topic.name if q.topic is not None else None,
        options=[OptionOut(label=o.label, text=o.text) for o in q.options],
    )


class QuizRepository:
    """
    Server side of every collaborator the attempt session and the tutor use.

    Each public method opens its own session and commits before returning,
    so a call is one unit of work.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ---- question bank ----------------------------------------------------

    def sample_questions(
        self,
        limit: int,
        topic_id: Optional[int] = None,
        subject_id: Optional[int] = None,
    ) -> List[QuestionOut]:
        db = self._session_factory()
        try:
            query = db.query(Question).options(
                selectinload(Question.options),
                selectinload(Question.topic),
                selectinload(Question.subject),
            )
            if topic_id is not None:
                query = query.filter(Question.topic_id == topic_id)
            if subject_id is not None:
                query = query.filter(Question.subject_id == subject_id)

            questions = query.order_by(func.random()).limit(limit).all()
            return [_map_question(q) for q in questions]
        finally:
            db.close()

    # ---- attempts ---------------------------------------------------------

    def open_attempt(
        self,
        mode: str,
        question_ids: Iterable[int] = (),
        user_id: Optional[int] = None,
    ) -> int:
        ids = list(dict.fromkeys(question_ids))
        db = self._session_factory()
        try:
            if ids:
                found = {
                    qid for (qid,) in db.query(Question.id).filter(Question.id.in_(ids)).all()
                }
                missing = [qid for qid in ids if qid not in found]
                if missing:
                    raise NotFoundError(f"unknown question ids: {missing}")

            attempt = Attempt(mode=AttemptModeDB(mode), user_id=user_id)
            attempt.answers = [AttemptAnswer(question_id=qid, marked=False) for qid in ids]
            db.add(attempt)
            db.commit()
            logger.info("Opened attempt %s (mode=%s, questions=%d)", attempt.id, mode, len(ids))
            return attempt.id
        finally:
            db.close()

    def _get_attempt(self, db: Session, attempt_id: int, user_id: Optional[int]) -> Attempt:
        attempt = db.get(Attempt, attempt_id)
        if attempt is None:
            raise NotFoundError("attempt not found")
        if attempt.user_id is not None and attempt.user_id != user_id:
            raise NotFoundError("attempt not found")
        return attempt

    def _get_open_attempt(self, db: Session, attempt_id: int, user_id: Optional[int]) -> Attempt:
        attempt = self._get_attempt(db, attempt_id, user_id)
        if not attempt.is_open:
            raise AttemptClosedError("attempt is already finished")
        return attempt

    def _upsert_answer(self, attempt_id: int, question_id: int, user_id: Optional[int], **values) -> None:
        # Select-then-write; a concurrent insert of the same key surfaces as
        # IntegrityError and is retried once as an update.
        for retry in (False, True):
            db = self._session_factory()
            try:
                self._get_open_attempt(db, attempt_id, user_id)
                question = db.get(Question, question_id)
                if question is None:
                    raise NotFoundError("question not found")
                selected = values.get("selected")
                if selected is not None and selected not in {o.label for o in question.options}:
                    raise InputError(f"question {question_id} has no option {selected}")

                row = (
                    db.query(AttemptAnswer)
                    .filter(
                        AttemptAnswer.attempt_id == attempt_id,
                        AttemptAnswer.question_id == question_id,
                    )
                    .first()
                )
                if row is None:
                    row = AttemptAnswer(attempt_id=attempt_id, question_id=question_id, marked=False)
                    db.add(row)
                for key, value in values.items():
                    setattr(row, key, value)
                db.commit()
                return
            except IntegrityError:
                db.rollback()
                if retry:
                    raise
            finally:
                db.close()

    def upsert_answer(
        self,
        attempt_id: int,
        question_id: int,
        selected: str,
        user_id: Optional[int] = None,
    ) -> None:
        self._upsert_answer(attempt_id, question_id, user_id, selected=selected)

    def upsert_mark(
        self,
        attempt_id: int,
        question_id: int,
        marked: bool,
        user_id: Optional[int] = None,
    ) -> None:
        self._upsert_answer(attempt_id, question_id, user_id, marked=marked)

    def close_attempt(self, attempt_id: int, user_id: Optional[int] = None) -> AttemptResult:
        """
        Score and close an attempt.

        Closing twice is allowed: the second call returns the stored result
        and does not grade again.
        """
        db = self._session_factory()
        try:
            attempt = self._get_attempt(db, attempt_id, user_id)
            if not attempt.is_open:
                return AttemptResult(
                    score=attempt.score or 0.0,
                    correct=attempt.correct or 0,
                    total=attempt.total or 0,
                    by_topic=attempt.by_topic or [],
                )

            answers = (
                db.query(AttemptAnswer)
                .options(selectinload(AttemptAnswer.question).selectinload(Question.topic))
                .filter(AttemptAnswer.attempt_id == attempt_id)
                .all()
            )
            result = score_attempt(
                (
                    a.selected,
                    a.question.correct_option,
                    a.question.topic.name if a.question.topic is not None else None,
                )
                for a in answers
            )

            attempt.total = result.total
            attempt.correct = result.correct
            attempt.score = result.score
            attempt.by_topic = [t.model_dump() for t in result.by_topic]
            attempt.finished_at = utcnow()
            db.commit()
            logger.info(
                "Closed attempt %s: %s/%s (%.2f%%)",
                attempt_id, result.correct, result.total, result.score,
            )
            return result
        finally:
            db.close()

    def list_attempts(self, user_id: int) -> List[Attempt]:
        db = self._session_factory()
        try:
            return (
                db.query(Attempt)
                .filter(Attempt.user_id == user_id)
                .order_by(Attempt.started_at.desc(), Attempt.id.desc())
                .all()
            )
        finally:
            db.close()

    # ---- tutor ------------------------------------------------------------

    def read_question_context(self, attempt_id: int, question_id: int) -> QuestionContext:
        db = self._session_factory()
        try:
            question = (
                db.query(Question)
                .options(selectinload(Question.options), selectinload(Question.topic))
                .filter(Question.id == question_id)
                .first()
            )
            if question is None:
                raise NotFoundError("question not found")

            answer = (
                db.query(AttemptAnswer)
                .filter(
                    AttemptAnswer.attempt_id == attempt_id,
                    AttemptAnswer.question_id == question_id,
                )
                .first()
            )
            return QuestionContext(
                question_id=question.id,
                stem=question.stem,
                options=[OptionOut(label=o.label, text=o.text) for o in question.options],
                correct_option=question.correct_option,
                topic=question.topic.name if question.topic is not None else "",
                selected=answer.selected if answer is not None else None,
            )
        finally:
            db.close()

    def upsert_explanation(
        self,
        attempt_id: int,
        question_id: int,
        text: str,
        user_id: Optional[int] = None,
    ) -> None:
        for retry in (False, True):
            db = self._session_factory()
            try:
                row = (
                    db.query(TutorExplanation)
                    .filter(
                        TutorExplanation.attempt_id == attempt_id,
                        TutorExplanation.question_id == question_id,
                    )
                    .first()
                )
                if row is None:
                    row = TutorExplanation(attempt_id=attempt_id, question_id=question_id)
                    db.add(row)
                row.text = text
                row.user_id = user_id
                db.commit()
                return
            except IntegrityError:
                db.rollback()
                if retry:
                    raise
            finally:
                db.close()

    def get_explanation(self, attempt_id: int, question_id: int) -> Optional[str]:
        db = self._session_factory()
        try:
            row = (
                db.query(TutorExplanation)
                .filter(
                    TutorExplanation.attempt_id == attempt_id,
                    TutorExplanation.question_id == question_id,
                )
                .first()
            )
            return row.text if row is not None else None
        finally:
            db.close()
