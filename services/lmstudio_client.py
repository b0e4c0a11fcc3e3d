"""HTTP client for JSON-mode completions from a local LM Studio server.

Only the chat-completions route is used: every extraction request is one
system/user exchange whose reply is expected to be a JSON document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import requests

from config.settings import settings

logger = logging.getLogger(__name__)

_COMPLETIONS_PATH = "/v1/chat/completions"
_SAMPLING_KEYS = frozenset({"temperature", "top_p", "max_tokens", "stop", "seed"})


class LMStudioClientError(RuntimeError):
    """The server could not be reached or answered with an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ChatCompletion:
    content: str
    model: str = ""
    finish_reason: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)

    @property
    def truncated(self) -> bool:
        """True when generation stopped on the token limit."""

        return self.finish_reason == "length"


class LMStudioClient:
    """Talks to the OpenAI-compatible API exposed by LM Studio."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        root = (base_url or settings.lmstudio_base_url).strip()
        if "://" not in root:
            root = f"http://{root}"
        self.base_url = root.rstrip("/")
        self.timeout = timeout or settings.lmstudio_timeout
        self.api_key = settings.lmstudio_api_key if api_key is None else api_key
        self._session = session or requests.Session()

    def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = self._session.request(
                "POST",
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            failed = exc.response
            raise LMStudioClientError(
                failed.text if failed is not None else str(exc),
                status_code=failed.status_code if failed is not None else None,
            ) from exc
        except requests.RequestException as exc:
            raise LMStudioClientError(f"LM Studio unreachable at {self.base_url}: {exc}") from exc

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise LMStudioClientError(f"LM Studio returned a non-JSON body: {exc}") from exc
        if not isinstance(body, dict):
            raise LMStudioClientError("LM Studio returned an unexpected body shape")
        return body

    @staticmethod
    def _first_choice(body: Dict[str, Any]) -> Dict[str, Any]:
        choices = body.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            return choices[0]
        return {}

    @classmethod
    def _reply_text(cls, body: Dict[str, Any]) -> str:
        message = cls._first_choice(body).get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
        # Older server builds answer in the legacy completions layout.
        for key in ("text", "response", "content"):
            if isinstance(body.get(key), str):
                return body[key]
        return ""

    def complete(
        self,
        *,
        model: str,
        messages: Iterable[Dict[str, Any]],
        json_mode: bool = True,
        options: Optional[Dict[str, Any]] = None,
    ) -> ChatCompletion:
        """Run one non-streaming chat completion.

        ``options`` may carry any sampling parameters; keys the server does
        not understand are dropped rather than rejected.
        """

        payload: Dict[str, Any] = {"model": model, "messages": list(messages), "stream": False}
        payload.update({k: v for k, v in (options or {}).items() if k in _SAMPLING_KEYS})
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        body = self._post_json(_COMPLETIONS_PATH, payload)
        completion = ChatCompletion(
            content=self._reply_text(body),
            model=str(body.get("model") or model),
            finish_reason=self._first_choice(body).get("finish_reason"),
            usage=body.get("usage") or {},
        )
        logger.debug(
            "LM Studio completion from %s: %d chars, finish_reason=%s",
            completion.model,
            len(completion.content),
            completion.finish_reason,
        )
        return completion


__all__ = ["ChatCompletion", "LMStudioClient", "LMStudioClientError"]
