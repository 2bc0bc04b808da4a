import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import history, rpc, tutor_api
from .config import QuickTestSettings, get_settings
from .errors import QuickTestError
from .llm_client import LLMClient
from .logging_utils import configure_logging
from .models import init_db, make_engine, make_session_factory
from .repository import QuizRepository
from .tutor import TextDeriver, ThreadedQuizStore, TutorService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[QuickTestSettings] = None,
    repository: Optional[QuizRepository] = None,
    llm: Optional[TextDeriver] = None,
) -> FastAPI:
    """
    Build the backend. Collaborators default to the ones described by
    ``settings`` and can be swapped for tests.

    Serve with ``uvicorn --factory quicktest.main:create_app``.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if repository is None:
        engine = make_engine(settings.database_url)
        init_db(engine)
        repository = QuizRepository(make_session_factory(engine))

    owned_llm = None
    if llm is None:
        owned_llm = llm = LLMClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owned_llm is not None:
            await owned_llm.aclose()

    app = FastAPI(title="Quick Test", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = ThreadedQuizStore(repository)
    app.state.settings = settings
    app.state.repository = repository
    app.state.tutor = TutorService(reader=store, cache=store, llm=llm)

    @app.exception_handler(QuickTestError)
    async def quicktest_error_handler(request: Request, exc: QuickTestError):
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    app.include_router(rpc.router)
    app.include_router(tutor_api.router)
    app.include_router(history.router)

    return app

