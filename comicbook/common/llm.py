"""
LiteLLM-powered chat completion helper utilities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, MutableMapping, Sequence

from litellm import completion

from .errors import RemoteServiceError, TransientServiceError, is_transient_failure

ChatMessage = Mapping[str, Any]

JSON_OBJECT_FORMAT = {"type": "json_object"}

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    """
    Structured response returned from an LLM chat completion.
    """

    text: str
    raw: Any


CompletionCallable = Callable[..., ChatResult]


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
    json_response: bool = False,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Invoke LiteLLM's `completion` API and return the consolidated text.

    Every failure of the remote call is normalized to :class:`RemoteServiceError`,
    or :class:`TransientServiceError` when the provider reports a gateway outage.
    """
    payload: MutableMapping[str, Any] = {
        "model": model,
        "messages": list(messages),
    }

    if temperature is not None:
        payload["temperature"] = temperature

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if api_key is not None:
        payload["api_key"] = api_key

    if timeout is not None:
        payload["timeout"] = timeout

    if json_response:
        payload["response_format"] = JSON_OBJECT_FORMAT

    payload.update(extra_kwargs)

    try:
        response = completion(**payload)
    except Exception as exc:
        raise normalize_remote_error(exc) from exc

    try:
        message = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RemoteServiceError("Unexpected LiteLLM response format.") from exc

    text = str(message or "").strip()
    return ChatResult(text=text, raw=response)


def normalize_remote_error(exc: BaseException) -> RemoteServiceError:
    """
    Map a provider exception onto the package's remote error taxonomy.
    """
    if isinstance(exc, RemoteServiceError):
        return exc

    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int):
        status_code = getattr(exc, "status", None)
    if not isinstance(status_code, int):
        status_code = None

    message = str(exc) or exc.__class__.__name__
    logger.warning("Remote generation call failed (%s): %s", status_code, message)
    if is_transient_failure(status_code, message):
        return TransientServiceError(message, status_code=status_code)
    return RemoteServiceError(message, status_code=status_code)
