"""
Text-generation WebUI API client.

Uses the OpenAI-compatible endpoints of a text-generation-webui server plus its
internal model load/unload routes, which are needed to free GPU memory before
image generation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from config import Config
from core.errors import BackendError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_json(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatCompletionParams:
    messages: list[ChatMessage]
    mode: str = "instruct"
    instruction_template: str = "Alpaca"
    auto_max_new_tokens: bool = True
    max_tokens: int | None = None
    stop: list[str] = field(default_factory=list)
    grammar: str | None = None
    should_continue: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mode": self.mode,
            "instruction_template": self.instruction_template,
            "auto_max_new_tokens": self.auto_max_new_tokens,
            "messages": [message.to_json() for message in self.messages],
            "stream": False,
            "stop": list(self.stop),
            "continue_": self.should_continue,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if self.grammar is not None:
            payload["grammar_string"] = self.grammar
        return payload


def extract_completion_text(data: Any) -> str:
    """Return the content of the first choice, or an empty string."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    message = first.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


class TGClient:
    """Async client for the text-generation WebUI HTTP API."""

    def __init__(self, config: Config) -> None:
        self.base_url = config.tg_api_url
        self.timeout = config.backend_timeout
        self._session: aiohttp.ClientSession | None = None

    # -- session management --------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    # -- model management ----------------------------------------------------

    async def load_model(self, model_name: str) -> None:
        await self._post("/v1/internal/model/load", {"model_name": model_name})

    async def unload_model(self) -> None:
        await self._post("/v1/internal/model/unload", None)

    # -- chat ----------------------------------------------------------------

    async def chat_completion(self, params: ChatCompletionParams) -> str:
        system = next((m.content for m in params.messages if m.role == "system"), None)
        user = next((m.content for m in reversed(params.messages) if m.role == "user"), None)
        logger.info("Chat completion\nSYSTEM\n%s\nUSER\n%s", system, user)
        data = await self._post("/v1/chat/completions", params.to_payload())
        text = extract_completion_text(data)
        logger.info("Chat completion\nASSISTANT\n%s", text)
        return text

    async def _post(self, path: str, payload: dict[str, Any] | None) -> Any:
        session = await self._get_session()
        try:
            async with session.post(
                f"{self.base_url}{path}",
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise BackendError(
                        f"Text generation backend responded with HTTP {resp.status}",
                        detail=body[:500] or None,
                    )
                if resp.content_type == "application/json":
                    return await resp.json()
                return await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BackendError(
                f"Text generation request failed: {str(exc) or type(exc).__name__}"
            ) from exc
