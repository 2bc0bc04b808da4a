from functools import lru_cache
from typing import List

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class QuickTestSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="QUICKTEST_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///quicktest.db"

    # Auth
    secret_key: SecretStr = SecretStr("change-this-dev-secret-later")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Tutor upstream
    openai_api_key: SecretStr = SecretStr("")
    openai_base_url: str = "https://api.openai.com/v1"
    chat_model: str = "gpt-4o-mini"
    responses_model: str = "gpt-4.1-mini"
    tutor_temperature: float = 0.2
    tutor_max_tokens: int = 300
    tutor_timeout: float = 30.0

    # Attempt session
    question_time_budget: int = 45
    tick_period: float = 1.0
    max_questions: int = 100

    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    log_level: str = "INFO"


@lru_cache
def get_settings() -> QuickTestSettings:
    return QuickTestSettings()
