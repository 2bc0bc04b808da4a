# llm_client.py

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import QuickTestSettings

logger = logging.getLogger(__name__)


@dataclass
class LLMReply:
    """
    Outcome of one upstream call.

    - text set: usable explanation.
    - error set: the provider answered with an explicit error message.
    - neither: nothing usable (empty body, timeout, transport failure).
    """

    text: Optional[str] = None
    error: Optional[str] = None
    status: Optional[int] = None


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(data: Dict[str, Any]) -> Optional[str]:
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return None


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    return None


def extract_chat_text(data: Dict[str, Any]) -> Optional[str]:
    try:
        return _clean(data["choices"][0]["message"]["content"])
    except (KeyError, IndexError, TypeError):
        return None


def extract_responses_text(data: Dict[str, Any]) -> Optional[str]:
    text = _clean(data.get("output_text"))
    if text:
        return text
    # Some models only return the structured "output" array.
    try:
        return _clean(data["output"][0]["content"][0]["text"])
    except (KeyError, IndexError, TypeError):
        return None


class LLMClient:
    """Two call shapes against an OpenAI-compatible API."""

    def __init__(self, settings: QuickTestSettings, http: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=settings.openai_base_url,
            headers={
                "Authorization": f"Bearer {settings.openai_api_key.get_secret_value()}",
                "Content-Type": "application/json",
            },
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Optional[httpx.Response]:
        try:
            return await self._http.post(path, json=payload, timeout=self.settings.tutor_timeout)
        except httpx.TimeoutException:
            logger.warning("Upstream %s timed out after %ss", path, self.settings.tutor_timeout)
        except httpx.HTTPError as exc:
            logger.warning("Upstream %s failed: %s", path, exc)
        return None

    async def chat_completion(self, system: str, user: str) -> LLMReply:
        response = await self._post(
            "/chat/completions",
            {
                "model": self.settings.chat_model,
                "temperature": self.settings.tutor_temperature,
                "max_tokens": self.settings.tutor_max_tokens,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            },
        )
        if response is None:
            return LLMReply()
        data = _json_or_empty(response)
        if response.is_success:
            return LLMReply(text=extract_chat_text(data), status=response.status_code)
        return LLMReply(error=_error_message(data), status=response.status_code)

    async def responses(self, prompt: str) -> LLMReply:
        response = await self._post(
            "/responses",
            {
                "model": self.settings.responses_model,
                "input": prompt,
            },
        )
        if response is None:
            return LLMReply()
        data = _json_or_empty(response)
        if response.is_success:
            return LLMReply(text=extract_responses_text(data), status=response.status_code)
        return LLMReply(error=_error_message(data), status=response.status_code)
