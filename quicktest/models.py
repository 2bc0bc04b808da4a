from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionTypeDB(str, Enum):
    MCQ = "mcq"
    TrueFalse = "truefalse"


class AttemptModeDB(str, Enum):
    Quick = "test_rapido"
    Training = "entrenamiento"


class Topic(Base):
    __tablename__ = "topics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    stem = Column(Text, nullable=False)
    qtype = Column("type", SAEnum(QuestionTypeDB), nullable=False, default=QuestionTypeDB.MCQ)
    difficulty = Column(Integer, nullable=False, default=1)
    # Never serialized to the learner; only scoring and the tutor read it.
    correct_option = Column(String(1), nullable=False)

    topic_id = Column(Integer, ForeignKey("topics.id"), nullable=True, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=True, index=True)

    topic = relationship("Topic")
    subject = relationship("Subject")
    options = relationship(
        "Option",
        order_by="Option.label",
        cascade="all, delete-orphan",
        back_populates="question",
    )


class Option(Base):
    __tablename__ = "options"
    __table_args__ = (UniqueConstraint("question_id", "label", name="uq_option_label"),)

    id = Column(Integer, primary_key=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    label = Column(String(1), nullable=False)
    text = Column(Text, nullable=False)

    question = relationship("Question", back_populates="options")


class Attempt(Base):
    __tablename__ = "attempts"

    id = Column(Integer, primary_key=True, index=True)
    mode = Column(SAEnum(AttemptModeDB), nullable=False)
    # Subject of the bearer token; accounts live with the identity provider.
    user_id = Column(Integer, nullable=True, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    # Filled once by finish_attempt; read back on repeated calls.
    total = Column(Integer, nullable=True)
    correct = Column(Integer, nullable=True)
    score = Column(Float, nullable=True)
    by_topic = Column(JSON, nullable=True)

    answers = relationship(
        "AttemptAnswer",
        cascade="all, delete-orphan",
        back_populates="attempt",
    )

    @property
    def is_open(self) -> bool:
        return self.finished_at is None


class AttemptAnswer(Base):
    __tablename__ = "attempt_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_answer"),
    )

    id = Column(Integer, primary_key=True)
    attempt_id = Column(Integer, ForeignKey("attempts.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    selected = Column(String(1), nullable=True)
    marked = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    attempt = relationship("Attempt", back_populates="answers")
    question = relationship("Question")


class TutorExplanation(Base):
    __tablename__ = "tutor_explanations"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_tutor_explanation"),
    )

    id = Column(Integer, primary_key=True)
    attempt_id = Column(Integer, nullable=False, index=True)
    question_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    text = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


def make_engine(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine) -> None:
    Base.metadata.create_all(bind=engine)
