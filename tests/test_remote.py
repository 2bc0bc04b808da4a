import httpx
import pytest

from quicktest.errors import (
    AttemptClosedError,
    NotFoundError,
    SessionStartError,
    TutorUnavailableError,
    UpstreamError,
)
from quicktest.llm_client import LLMReply
from quicktest.main import create_app
from quicktest.remote import RemoteBackend
from quicktest.session import AttemptSession, Phase, SessionContext


@pytest.fixture
def llm(make_llm):
    return make_llm()


@pytest.fixture
async def backend(settings, repository, llm):
    app = create_app(settings, repository=repository, llm=llm)
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
    yield RemoteBackend(http=http)
    await http.aclose()


async def test_full_attempt_against_backend(backend, settings, bank, llm):
    llm.chat_replies.append(LLMReply(text="Explicación de la pregunta 1", status=200))
    session = AttemptSession(
        SessionContext.from_backend(backend, settings, confirm_incomplete=lambda n: True)
    )

    await session.start(5, training=True)
    assert session.phase is Phase.ANSWERING
    assert len(session.questions) == 5

    first = session.active_question
    session.choose(first.id, "A")
    await session.drain()
    assert session.explanations[first.id] == "Explicación de la pregunta 1"

    # One connection backs the in-memory database, so writes go one at a time.
    for question in session.questions[1:4]:
        session.choose(question.id, "A")
        await session.drain()
    session.toggle_mark(session.questions[4].id)
    await session.drain()
    assert session.errors == []

    result = await session.finish()
    await session.close()

    assert session.phase is Phase.FINISHED
    assert result.total == 5
    assert result.correct == 4
    assert sum(t.total for t in result.by_topic) == 5


async def test_backend_errors_map_to_taxonomy(backend, repository, bank):
    with pytest.raises(NotFoundError):
        await backend.close(12345)

    attempt_id = await backend.open("test_rapido", bank)
    await backend.close(attempt_id)
    with pytest.raises(AttemptClosedError):
        await backend.upsert_answer(attempt_id, bank[0], "A")


async def test_tutor_envelope_maps_to_errors(backend, llm, bank):
    with pytest.raises(TutorUnavailableError):
        await backend.explain(1, bank[0])

    llm.chat_replies.append(LLMReply(error="quota", status=429))
    with pytest.raises(UpstreamError) as info:
        await backend.explain(1, bank[0])
    assert info.value.status_code == 429
    assert info.value.message == "quota"

    with pytest.raises(NotFoundError):
        await backend.explain(1, 999)


async def test_persistence_failure_does_not_unwind_session(backend, settings, repository, bank):
    session = AttemptSession(SessionContext.from_backend(backend, settings))
    await session.start(2)
    # Close behind the session's back so every later write is rejected.
    repository.close_attempt(session.attempt_id)

    question = session.active_question
    session.choose(question.id, "B")
    await session.drain()

    assert session.answers.selected(question.id) == "B"
    assert session.phase is Phase.ANSWERING
    assert session.error == "attempt is already finished"
    await session.close()


def _mocked(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend.test")
    return RemoteBackend(http=http), http


async def test_non_json_success_fails_start_cleanly(settings):
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    backend, http = _mocked(handler)
    session = AttemptSession(SessionContext.from_backend(backend, settings))

    with pytest.raises(SessionStartError):
        await session.start(3)
    await http.aclose()

    assert session.phase is Phase.IDLE
    assert "get_random_questions" in session.error


async def test_malformed_result_is_upstream_error():
    def handler(request):
        return httpx.Response(200, json={"score": "n/a"})

    backend, http = _mocked(handler)
    with pytest.raises(UpstreamError):
        await backend.close(1)
    await http.aclose()


async def test_tutor_list_body_is_upstream_error():
    def handler(request):
        return httpx.Response(200, json=["not", "an", "envelope"])

    backend, http = _mocked(handler)
    with pytest.raises(UpstreamError) as info:
        await backend.explain(1, 2)
    await http.aclose()

    assert info.value.status_code == 502
