from fastapi import Request

from .config import QuickTestSettings
from .repository import QuizRepository
from .tutor import TutorService


def get_settings_dep(request: Request) -> QuickTestSettings:
    return request.app.state.settings


def get_repository(request: Request) -> QuizRepository:
    return request.app.state.repository


def get_tutor(request: Request) -> TutorService:
    return request.app.state.tutor
