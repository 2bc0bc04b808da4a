from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

OptionLabel = Literal["A", "B", "C", "D"]
OPTION_LABELS: tuple = ("A", "B", "C", "D")

AttemptMode = Literal["test_rapido", "entrenamiento"]


class OptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    label: OptionLabel
    text: str


class QuestionOut(BaseModel):
    """A question as the learner sees it: no correct option."""

    id: int
    stem: str
    type: Literal["mcq", "truefalse"] = "mcq"
    difficulty: Literal[1, 2, 3] = 1
    subject: Optional[str] = None
    topic: Optional[str] = None
    options: List[OptionOut]

    model_config = ConfigDict(frozen=True)

    @field_validator("options")
    @classmethod
    def _unique_labels(cls, options: List[OptionOut]) -> List[OptionOut]:
        labels = [o.label for o in options]
        if len(set(labels)) != len(labels):
            raise ValueError(f"duplicate option labels: {labels}")
        return sorted(options, key=lambda o: o.label)

    def has_label(self, label: str) -> bool:
        return any(o.label == label for o in self.options)


class SampleRequest(BaseModel):
    topic_id: Optional[int] = None
    subject_id: Optional[int] = None
    limit: int = Field(default=10, ge=1)


class StartAttemptRequest(BaseModel):
    mode: AttemptMode = "test_rapido"
    question_ids: List[int] = []


class StartAttemptResponse(BaseModel):
    attempt_id: int


class SubmitAnswerRequest(BaseModel):
    attempt_id: int
    question_id: int
    selected: OptionLabel


class MarkAnswerRequest(BaseModel):
    attempt_id: int
    question_id: int
    marked: bool


class FinishAttemptRequest(BaseModel):
    attempt_id: int


class AckResponse(BaseModel):
    ok: bool = True


class TopicBreakdown(BaseModel):
    topic: str
    correct: int
    total: int


class AttemptResult(BaseModel):
    score: float
    correct: int
    total: int
    by_topic: List[TopicBreakdown] = []


class TutorRequest(BaseModel):
    # Optional so that a missing id is answered with 400 in the tutor
    # envelope rather than a validation 422.
    attempt_id: Optional[int] = None
    question_id: Optional[int] = None


class TutorResponse(BaseModel):
    ok: bool
    text: Optional[str] = None
    error: Optional[str] = None


class QuestionContext(BaseModel):
    """Everything the tutor needs to explain one question."""

    question_id: int
    stem: str
    options: List[OptionOut]
    correct_option: str
    topic: str = ""
    selected: Optional[str] = None


class AttemptRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    mode: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    total: Optional[int] = None
    correct: Optional[int] = None
    score: Optional[float] = None


class HistoryKpis(BaseModel):
    tests: int = 0
    avg: int = 0
    last7: int = 0


class HistoryResponse(BaseModel):
    attempts: List[AttemptRow]
    kpis: HistoryKpis
