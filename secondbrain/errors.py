"""
Error taxonomy
---------------
Every failure the engine reports to a caller is one of the classes below.
Boundary layers (API server, CLI) translate them by class or by `kind`,
never by message text.

    RAGError
      ValidationError               400  bad input shape
      ConfigurationError            500  invalid engine configuration
      NotFoundError                 404  document / model / conversation missing
      ConflictError                 409  duplicate ingestion
      UnprocessableContentError     422  no extractable text
        NoContentError              422  nothing ingested yet
        NoUsableContextError        422  context budget excluded every fragment
      DependencyUnavailableError    503  embedding / LLM provider unreachable
      DependencyTimeoutError        504  provider exceeded the deadline
      InvalidResponseError          502  provider answered with a malformed body
      InternalError                 500  unexpected

Nothing in the engine retries automatically; the caller re-issues the request.
"""
from __future__ import annotations

from typing import Any


class RAGError(Exception):
    """Base class. `remediation` is user-facing advice, never a raw provider body."""

    kind: str = "internal"
    status_code: int = 500

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.remediation:
            body["remediation"] = self.remediation
        return body


class ValidationError(RAGError):
    kind = "validation"
    status_code = 400


class ConfigurationError(RAGError):
    kind = "configuration"
    status_code = 500


class NotFoundError(RAGError):
    kind = "not_found"
    status_code = 404


class ConflictError(RAGError):
    kind = "conflict"
    status_code = 409


class UnprocessableContentError(RAGError):
    kind = "unprocessable_content"
    status_code = 422


class NoContentError(UnprocessableContentError):
    kind = "no_content"


class NoUsableContextError(UnprocessableContentError):
    kind = "no_usable_context"


class DependencyUnavailableError(RAGError):
    kind = "dependency_unavailable"
    status_code = 503


class DependencyTimeoutError(RAGError):
    kind = "dependency_timeout"
    status_code = 504


class InvalidResponseError(RAGError):
    kind = "invalid_response"
    status_code = 502


class InternalError(RAGError):
    kind = "internal"
    status_code = 500
