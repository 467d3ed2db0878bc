"""Error taxonomy shared by the transport, the executor and the flows."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

import requests


class ErrorKind(str, Enum):
    OUTPUT_TOKEN_LIMIT = "output_token_limit"
    IMAGE_LIMIT = "image_limit"
    TRANSPORT = "transport"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    PARSE = "parse"
    CANCELED = "canceled"
    OTHER = "other"


class SnapsolveError(RuntimeError):
    """Base class for errors raised by this package."""

    kind: ErrorKind = ErrorKind.OTHER


class ProviderError(SnapsolveError):
    """Non-2xx answer (or unusable payload) from a model provider."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status: int | None = None,
        code: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status = status
        self.code = code

    def __str__(self) -> str:
        prefix = f"{self.provider} " if self.provider else ""
        status = f" ({self.status})" if self.status is not None else ""
        return f"{prefix}request failed{status}: {self.message}"


class ProviderNotConfiguredError(SnapsolveError):
    """No client (API key) is configured for the selected provider."""

    kind = ErrorKind.AUTHORIZATION


class ResponseParseError(SnapsolveError):
    """The model answered, but not in the machine-readable shape we asked for."""

    kind = ErrorKind.PARSE


class RequestCanceled(SnapsolveError):
    """The caller aborted the flow."""

    kind = ErrorKind.CANCELED

    def __init__(self, message: str = "Request was canceled", *, attempts: list[Any] | None = None) -> None:
        super().__init__(message)
        self.attempts = list(attempts or [])


class NonRecoverableError(SnapsolveError):
    """A failure the retry loop must not absorb (credentials, quota, parse)."""

    def __init__(
        self,
        kind: ErrorKind,
        cause: BaseException,
        *,
        attempts: list[Any] | None = None,
    ) -> None:
        super().__init__(str(cause))
        self.kind = kind
        self.cause = cause
        self.attempts = list(attempts or [])


class RetriesExhaustedError(SnapsolveError):
    """Every attempt failed; ``last_error`` is the final underlying failure."""

    def __init__(
        self,
        last_error: BaseException,
        *,
        kind: ErrorKind,
        attempts: list[Any] | None = None,
    ) -> None:
        self.attempts = list(attempts or [])
        super().__init__(f"Request failed after {len(self.attempts)} attempts: {last_error}")
        self.last_error = last_error
        self.kind = kind


TOKEN_LIMIT_RE = re.compile(
    r"max[_\s-]?tokens|max_output_tokens|output token|token limit|"
    r"maximum context length|context[_\s]length|too many tokens",
    flags=re.IGNORECASE,
)
IMAGE_LIMIT_RE = re.compile(
    r"too many (?:images|files|attachments)|image (?:count|limit)|exceeds?[^\n]*\bimages?\b|"
    r"(?:payload|request|entity|image|file)s? (?:is |are )?too large|payload size exceeds",
    flags=re.IGNORECASE,
)
TRANSPORT_RE = re.compile(
    r"econnreset|connection reset|socket hang up|timed? ?out|etimedout|"
    r"connection aborted|remote end closed|broken pipe",
    flags=re.IGNORECASE,
)

_TIMEOUT_STATUSES = {408, 504, 524}
_TOKEN_CODES = {"max_tokens", "context_length_exceeded", "output_token_limit"}


def classify_error(exc: BaseException) -> ErrorKind:
    """Map a raised exception onto the recovery taxonomy."""

    if isinstance(exc, SnapsolveError) and not isinstance(exc, ProviderError):
        return exc.kind

    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return ErrorKind.TRANSPORT

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.TRANSPORT

    if isinstance(exc, ProviderError):
        if exc.status in {401, 403}:
            return ErrorKind.AUTHORIZATION
        if exc.status == 429:
            return ErrorKind.RATE_LIMIT
        if exc.code.lower() in _TOKEN_CODES:
            return ErrorKind.OUTPUT_TOKEN_LIMIT
        if exc.status in _TIMEOUT_STATUSES:
            return ErrorKind.TRANSPORT

        text = f"{exc.code} {exc.message}"
        if TOKEN_LIMIT_RE.search(text):
            return ErrorKind.OUTPUT_TOKEN_LIMIT
        if exc.status == 413 or IMAGE_LIMIT_RE.search(text):
            return ErrorKind.IMAGE_LIMIT
        if TRANSPORT_RE.search(text):
            return ErrorKind.TRANSPORT
        return ErrorKind.OTHER

    if TRANSPORT_RE.search(str(exc)):
        return ErrorKind.TRANSPORT
    return ErrorKind.OTHER


_PROVIDER_LABELS = {"openai": "OpenAI", "gemini": "Gemini", "anthropic": "Anthropic"}


def provider_label(provider: str) -> str:
    return _PROVIDER_LABELS.get(provider, provider or "Model provider")


def user_message(kind: ErrorKind, provider: str = "") -> str:
    """Human-actionable text for a surfaced failure."""

    label = provider_label(provider)
    messages = {
        ErrorKind.OUTPUT_TOKEN_LIMIT: (
            f"{label} could not produce a full answer within its token limits. "
            "Reduce the number of screenshots, crop them to the problem area, "
            "or switch to a different model."
        ),
        ErrorKind.IMAGE_LIMIT: (
            f"Your screenshots contain too much information for {label} to process. "
            "Reduce the image count or crop screenshots to focus on the problem area."
        ),
        ErrorKind.TRANSPORT: (
            f"{label} did not respond (network error or timeout). "
            "Try again, use fewer screenshots, or switch providers in settings."
        ),
        ErrorKind.AUTHORIZATION: (
            f"Invalid or missing {label} API key. Please check your settings."
        ),
        ErrorKind.RATE_LIMIT: (
            f"{label} API rate limit exceeded or insufficient credits. "
            "Please wait a few minutes before retrying."
        ),
        ErrorKind.PARSE: (
            "Could not understand the model response. "
            "Please try again or use clearer screenshots."
        ),
        ErrorKind.CANCELED: "Processing was canceled by the user.",
        ErrorKind.OTHER: (
            f"{label} request failed. Please try again later."
        ),
    }
    return messages[kind]
