"""Failure classification.

Maps a raw failure (an exception or a bare message) onto the ErrorKind
taxonomy plus a retryable flag. Matching is done on lower-cased text, so the
same input always yields the same classification:

    network              "network", "connection", "cannot connect"
    timeout              "timeout", "timed out"
    rate_limit           "429", "rate limit", "too many requests"
    auth                 "401", "403", "unauthorized", "forbidden"   (not retryable)
    service_unavailable  "unavailable", "502", "503", "504", "overloaded"

Anything unmatched that came from outside the core (an LLMError, or any
exception raised by an injected collaborator, flagged with external=True) is
an unclassified failure of the external service: service_unavailable,
retryable. Anything else is `unknown`, retryable only when a wrapped cause
matches one of the retryable patterns.
"""

from __future__ import annotations

from typing import NamedTuple

from rpg_narrator.llm import LLMError
from rpg_narrator.models import ErrorKind


class ClassifiedError(NamedTuple):
    kind: ErrorKind
    retryable: bool
    message: str


_PATTERNS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.NETWORK, ("network", "connection", "cannot connect")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.RATE_LIMIT, ("429", "rate limit", "rate_limit", "too many requests")),
    (ErrorKind.AUTH, ("401", "403", "unauthorized", "forbidden")),
    (ErrorKind.SERVICE_UNAVAILABLE, ("unavailable", "502", "503", "504", "overloaded")),
]

_NOT_RETRYABLE = {ErrorKind.AUTH}


def _text_of(error: BaseException | str) -> str:
    if isinstance(error, str):
        return error.lower()
    parts = [type(error).__name__, str(error)]
    status = getattr(error, "status_code", None)
    response = getattr(error, "response", None)
    if status is None and response is not None:
        status = getattr(response, "status_code", None)
    if status is not None:
        parts.append(str(status))
    return " ".join(parts).lower()


def _match(error: BaseException | str) -> ErrorKind | None:
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorKind.NETWORK
    text = _text_of(error)
    for kind, needles in _PATTERNS:
        if any(n in text for n in needles):
            return kind
    return None


def _causes(error: BaseException):
    seen = {id(error)}
    current = error.__cause__ or error.__context__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_error(error: BaseException | str, external: bool = False) -> ClassifiedError:
    """Classify a failure. Pure: no logging, no side effects.

    `external` marks failures raised by an injected collaborator (LLM,
    snapshot provider, persistence sink) rather than by the core itself.
    """
    message = error if isinstance(error, str) else (str(error) or type(error).__name__)

    kind = _match(error)
    if kind is not None:
        return ClassifiedError(kind, kind not in _NOT_RETRYABLE, message)

    if external or isinstance(error, LLMError):
        return ClassifiedError(ErrorKind.SERVICE_UNAVAILABLE, True, message)

    retryable = False
    if isinstance(error, BaseException):
        for cause in _causes(error):
            wrapped = _match(cause)
            if wrapped is not None:
                retryable = wrapped not in _NOT_RETRYABLE
                break
    return ClassifiedError(ErrorKind.UNKNOWN, retryable, message)
