"""Custom exceptions for canonguard.

Every error carries a machine-readable ``code`` so callers can surface a
structured error instead of a partial payload.
"""

from __future__ import annotations


class CanonGuardError(Exception):
    """Base exception for all canonguard errors."""

    code = "internal_error"

    def to_response(self) -> dict:
        """Structured error body for API consumers."""
        return {"error": {"code": self.code, "message": str(self)}}


class ConfigError(CanonGuardError):
    """Configuration-related errors."""

    code = "config_error"


class InvalidRequestError(CanonGuardError):
    """A context request failed validation."""

    code = "invalid_request"


class NotFoundError(CanonGuardError):
    """A requested story record does not exist."""

    code = "not_found"

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} '{record_id}' not found")


class BudgetInfeasibleError(CanonGuardError):
    """Non-droppable prompt content does not fit in the token budget."""

    code = "budget_infeasible"

    def __init__(self, required_tokens: int, max_tokens: int, what: str = "fixed prompt text"):
        self.required_tokens = required_tokens
        self.max_tokens = max_tokens
        super().__init__(
            f"{what} needs {required_tokens} tokens but the budget is {max_tokens}"
        )


class UpstreamUnavailableError(CanonGuardError):
    """An external collaborator (embeddings, tokenizer, storage) is unreachable."""

    code = "upstream_unavailable"

    def __init__(self, service: str, detail: str = ""):
        self.service = service
        message = f"Upstream service '{service}' is unavailable"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ComposeTimeoutError(CanonGuardError):
    """Context composition exceeded its time bound."""

    code = "timeout"
