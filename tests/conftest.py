from typing import List, Optional

import pytest

from quicktest.config import QuickTestSettings
from quicktest.llm_client import LLMReply
from quicktest.models import (
    Option,
    Question,
    Topic,
    TutorExplanation,
    init_db,
    make_engine,
    make_session_factory,
)
from quicktest.repository import QuizRepository


class FakeLLM:
    """Scripted upstream: pops one reply per call, empty reply when exhausted."""

    def __init__(self, chat: Optional[List[LLMReply]] = None, responses: Optional[List[LLMReply]] = None):
        self.chat_replies = list(chat or [])
        self.responses_replies = list(responses or [])
        self.chat_calls = []
        self.responses_calls = []

    async def chat_completion(self, system, user):
        self.chat_calls.append((system, user))
        if self.chat_replies:
            reply = self.chat_replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return LLMReply()

    async def responses(self, prompt):
        self.responses_calls.append(prompt)
        if self.responses_replies:
            return self.responses_replies.pop(0)
        return LLMReply()


@pytest.fixture
def settings():
    return QuickTestSettings(
        _env_file=None,
        database_url="sqlite://",
        tick_period=3600.0,
        openai_api_key="test-key",
        secret_key="test-secret",
        log_level="WARNING",
    )


@pytest.fixture
def session_factory(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return QuizRepository(session_factory)


@pytest.fixture
def make_question(session_factory):
    def _make(stem, correct="A", topic=None, labels="ABCD"):
        db = session_factory()
        try:
            topic_row = None
            if topic:
                topic_row = db.query(Topic).filter(Topic.name == topic).first() or Topic(name=topic)
            question = Question(
                stem=stem,
                correct_option=correct,
                topic=topic_row,
                options=[Option(label=label, text=f"{stem} option {label}") for label in labels],
            )
            db.add(question)
            db.commit()
            return question.id
        finally:
            db.close()

    return _make


@pytest.fixture
def bank(make_question):
    """Five questions, three under one topic and two under another; A is always correct."""
    return [
        make_question(f"Question {i}", topic="Constitución" if i <= 3 else "Procedimiento")
        for i in range(1, 6)
    ]


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def count_explanations(session_factory):
    def _count(attempt_id, question_id):
        db = session_factory()
        try:
            return (
                db.query(TutorExplanation)
                .filter(
                    TutorExplanation.attempt_id == attempt_id,
                    TutorExplanation.question_id == question_id,
                )
                .count()
            )
        finally:
            db.close()

    return _count
