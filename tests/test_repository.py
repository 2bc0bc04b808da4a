import pytest

from quicktest.errors import AttemptClosedError, InputError, NotFoundError
from quicktest.models import AttemptAnswer, Attempt
from quicktest.scoring import score_attempt, simple_percent


def _answer_rows(session_factory, attempt_id):
    db = session_factory()
    try:
        return db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt_id).all()
    finally:
        db.close()


def test_sample_respects_limit_and_topic(repository, bank, make_question):
    make_question("Other", topic="Igualdad")

    assert len(repository.sample_questions(limit=3)) == 3

    picked = repository.sample_questions(limit=10, topic_id=1)
    assert {q.topic for q in picked} == {"Constitución"}
    assert len(picked) == 3


def test_sample_hides_correct_option(repository, bank):
    for question in repository.sample_questions(limit=5):
        dumped = question.model_dump()
        assert "correct_option" not in dumped
        assert [o["label"] for o in dumped["options"]] == ["A", "B", "C", "D"]


def test_sample_returns_what_exists(repository, bank):
    assert len(repository.sample_questions(limit=50)) == 5


def test_open_attempt_creates_one_row_per_question(repository, bank, session_factory):
    attempt_id = repository.open_attempt("test_rapido", bank + [bank[0]])
    rows = _answer_rows(session_factory, attempt_id)
    assert sorted(r.question_id for r in rows) == sorted(bank)
    assert all(r.selected is None and r.marked is False for r in rows)


def test_open_attempt_with_unknown_question(repository, bank):
    with pytest.raises(NotFoundError):
        repository.open_attempt("test_rapido", [bank[0], 999])


def test_answer_upsert_is_last_write_wins(repository, bank, session_factory):
    attempt_id = repository.open_attempt("test_rapido", bank)

    repository.upsert_answer(attempt_id, bank[0], "B")
    repository.upsert_answer(attempt_id, bank[0], "C")

    rows = [r for r in _answer_rows(session_factory, attempt_id) if r.question_id == bank[0]]
    assert len(rows) == 1
    assert rows[0].selected == "C"


def test_answer_upsert_creates_missing_row(repository, bank, session_factory):
    attempt_id = repository.open_attempt("test_rapido")
    repository.upsert_answer(attempt_id, bank[1], "D")
    rows = _answer_rows(session_factory, attempt_id)
    assert [(r.question_id, r.selected) for r in rows] == [(bank[1], "D")]


def test_answer_with_label_not_offered(repository, make_question):
    qid = make_question("Verdadero o falso", labels="AB")
    attempt_id = repository.open_attempt("test_rapido", [qid])
    with pytest.raises(InputError):
        repository.upsert_answer(attempt_id, qid, "C")


def test_mark_upsert_is_idempotent_and_keeps_selection(repository, bank, session_factory):
    attempt_id = repository.open_attempt("test_rapido", bank)
    repository.upsert_answer(attempt_id, bank[2], "A")

    repository.upsert_mark(attempt_id, bank[2], True)
    repository.upsert_mark(attempt_id, bank[2], True)

    rows = [r for r in _answer_rows(session_factory, attempt_id) if r.question_id == bank[2]]
    assert len(rows) == 1
    assert rows[0].marked is True
    assert rows[0].selected == "A"


def test_close_scores_with_topic_breakdown(repository, bank):
    attempt_id = repository.open_attempt("test_rapido", bank)
    repository.upsert_answer(attempt_id, bank[0], "A")
    repository.upsert_answer(attempt_id, bank[1], "B")
    repository.upsert_answer(attempt_id, bank[3], "A")

    result = repository.close_attempt(attempt_id)

    assert result.total == 5
    assert result.correct == 2
    assert result.score == 40.0
    assert [(t.topic, t.correct, t.total) for t in result.by_topic] == [
        ("Constitución", 1, 3),
        ("Procedimiento", 1, 2),
    ]


def test_close_twice_returns_stored_result(repository, bank, session_factory):
    attempt_id = repository.open_attempt("test_rapido", bank)
    repository.upsert_answer(attempt_id, bank[0], "A")
    first = repository.close_attempt(attempt_id)

    db = session_factory()
    finished_at = db.get(Attempt, attempt_id).finished_at
    db.close()

    second = repository.close_attempt(attempt_id)
    assert second == first

    db = session_factory()
    assert db.get(Attempt, attempt_id).finished_at == finished_at
    db.close()


def test_closed_attempt_rejects_writes(repository, bank):
    attempt_id = repository.open_attempt("test_rapido", bank)
    repository.close_attempt(attempt_id)

    with pytest.raises(AttemptClosedError):
        repository.upsert_answer(attempt_id, bank[0], "A")
    with pytest.raises(AttemptClosedError):
        repository.upsert_mark(attempt_id, bank[0], True)


def test_attempt_owned_by_another_user_is_not_found(repository, bank):
    attempt_id = repository.open_attempt("test_rapido", bank, user_id=1)
    with pytest.raises(NotFoundError):
        repository.upsert_answer(attempt_id, bank[0], "A", user_id=2)
    with pytest.raises(NotFoundError):
        repository.close_attempt(attempt_id)
    repository.upsert_answer(attempt_id, bank[0], "A", user_id=1)


def test_explanation_upsert_keeps_one_entry(repository, bank, count_explanations):
    repository.upsert_explanation(10, bank[0], "primera")
    repository.upsert_explanation(10, bank[0], "primera")
    repository.upsert_explanation(10, bank[0], "segunda", user_id=4)

    assert count_explanations(10, bank[0]) == 1
    assert repository.get_explanation(10, bank[0]) == "segunda"
    assert repository.get_explanation(10, bank[1]) is None


def test_question_context_for_tutor(repository, bank, make_question):
    attempt_id = repository.open_attempt("entrenamiento", bank)
    repository.upsert_answer(attempt_id, bank[0], "D")

    context = repository.read_question_context(attempt_id, bank[0])
    assert context.stem == "Question 1"
    assert context.correct_option == "A"
    assert context.topic == "Constitución"
    assert context.selected == "D"

    bare = make_question("Sin tema")
    context = repository.read_question_context(attempt_id, bare)
    assert context.topic == ""
    assert context.selected is None

    with pytest.raises(NotFoundError):
        repository.read_question_context(attempt_id, 999)


def test_score_attempt_handles_empty_and_unknown_topic():
    assert score_attempt([]).score == 0.0
    result = score_attempt([("A", "A", None), (None, "B", None)])
    assert result.correct == 1
    assert result.by_topic[0].topic == "Sin tema"
    assert simple_percent(3, 1) == 33.33
