"""Error taxonomy and the classifier applied at collaborator boundaries."""

import asyncio
from enum import Enum

import httpx


class ErrorKind(str, Enum):
    """Stable error kinds; the value doubles as the user-visible code."""
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CONTENT_POLICY_BLOCKED = "CONTENT_POLICY_BLOCKED"
    INSUFFICIENT_INPUT = "INSUFFICIENT_INPUT"
    SCHEMA_INVALID = "SCHEMA_INVALID"  # recovered inside consolidation
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    UNKNOWN = "UNKNOWN"


class CollaboratorError(Exception):
    """Failure reported by an external service, already classified."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(CollaboratorError):
    kind = ErrorKind.RATE_LIMITED


class QuotaExceededError(CollaboratorError):
    kind = ErrorKind.QUOTA_EXCEEDED


class ContentPolicyError(CollaboratorError):
    kind = ErrorKind.CONTENT_POLICY_BLOCKED


class TransientServiceError(CollaboratorError):
    kind = ErrorKind.TRANSIENT_NETWORK


class SchemaError(CollaboratorError):
    """Collaborator answered, but not with the document we asked for."""
    kind = ErrorKind.SCHEMA_INVALID


class PipelineError(Exception):
    """A failed session: what went wrong, where, and the stable code."""

    def __init__(self, message: str, kind: ErrorKind, stage: str):
        super().__init__(message)
        self.message = message or kind.value
        self.kind = kind
        self.stage = stage

    @property
    def code(self) -> str:
        return self.kind.value


# Markers some providers put in 400/422 bodies for safety rejections
_POLICY_MARKERS = ("content_policy", "safety", "prohibited", "nsfw", "blocked")
_QUOTA_MARKERS = ("quota", "billing", "insufficient credits", "exhausted balance")


def raise_for_collaborator_status(response: httpx.Response, service: str) -> None:
    """Map a non-2xx HTTP response onto the collaborator error hierarchy.

    This is the single place where provider responses are inspected; every
    client calls it right after receiving a response.
    """
    if response.is_success:
        return

    status = response.status_code
    body = response.text[:500]
    lowered = body.lower()
    message = f"{service} returned HTTP {status}: {body}"

    if status == 429:
        if any(marker in lowered for marker in _QUOTA_MARKERS):
            raise QuotaExceededError(message, status)
        raise RateLimitedError(message, status)
    if status == 402:
        raise QuotaExceededError(message, status)
    if status in (400, 403, 422) and any(marker in lowered for marker in _POLICY_MARKERS):
        raise ContentPolicyError(message, status)
    if status in (408, 502, 503, 504) or status >= 500:
        raise TransientServiceError(message, status)
    raise CollaboratorError(message, status)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception raised by a collaborator call onto an ErrorKind."""
    if isinstance(exc, CollaboratorError):
        return exc.kind
    if isinstance(exc, PipelineError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.TRANSIENT_NETWORK
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ErrorKind.RATE_LIMITED
        if status == 402:
            return ErrorKind.QUOTA_EXCEEDED
        if status >= 500:
            return ErrorKind.TRANSIENT_NETWORK
        return ErrorKind.UNKNOWN
    if isinstance(exc, ConnectionError):
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.UNKNOWN


def describe_error(exc: BaseException) -> str:
    """Non-empty message for an exception, even when it carries none."""
    text = str(exc).strip()
    return text or type(exc).__name__
