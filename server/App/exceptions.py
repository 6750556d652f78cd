"""
Typed failures raised by the retrieval engine.

Every error carries a `context` dict (operation name, lengths, scope, timing)
that is safe to log: raw query or chunk text is never placed in it.
"""

from typing import Any, Dict, Optional

SEARCH_GUIDANCE = "No results. Retry or narrow the search scope."


class VectorEngineError(Exception):
    """Base class for all engine failures."""

    user_message = SEARCH_GUIDANCE

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "guidance": self.user_message,
            "context": self.context,
        }


class EmbeddingError(VectorEngineError):
    """Provider unreachable, malformed response, or dimension mismatch."""

    def __init__(
        self,
        message: str,
        model: str,
        input_length: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, {"model": model, "input_length": input_length, **(context or {})})
        self.model = model
        self.input_length = input_length


class EmbeddingTimeoutError(EmbeddingError):
    """The provider did not answer within the gateway deadline."""

    def __init__(self, message: str, model: str, input_length: int, timeout_s: float):
        super().__init__(message, model, input_length, {"timeout_s": timeout_s, "retryable": True})
        self.timeout_s = timeout_s
        self.retryable = True


class StoreQueryError(VectorEngineError):
    """Connectivity, statement or pool failure while talking to the store."""

    def __init__(
        self,
        message: str,
        operation: str,
        retryable: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, {"operation": operation, "retryable": retryable, **(context or {})})
        self.operation = operation
        self.retryable = retryable


class VectorStoreNotReadyError(StoreQueryError):
    """Raised when pgvector schema/table/extension is not available."""

    user_message = "Vector store is not initialized. Run the schema migration and retry."


class SearchTimeoutError(StoreQueryError):
    """A store round trip exceeded its deadline."""

    def __init__(self, message: str, operation: str, timeout_s: float, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, operation, retryable=True, context={"timeout_s": timeout_s, **(context or {})})
        self.timeout_s = timeout_s


class FilterValidationError(VectorEngineError):
    """Rejected search parameters. Raised before any store round trip."""

    user_message = "Invalid search filter."

    def __init__(self, message: str, field: str):
        super().__init__(message, {"field": field})
        self.field = field


class OptimizationExecutionError(VectorEngineError):
    """A remediation statement failed while being applied."""

    def __init__(self, message: str, statement: str, rollback_statement: Optional[str] = None):
        super().__init__(message, {"statement": statement, "rollback_statement": rollback_statement})
        self.statement = statement
        self.rollback_statement = rollback_statement
        self.user_message = (
            f"Remediation failed: {statement}"
            + (f" | rollback: {rollback_statement}" if rollback_statement else "")
        )


class RateLimitExceededError(VectorEngineError):
    user_message = "Search rate limit reached. Retry shortly."

    def __init__(self, key: str, limit: int, window_seconds: int):
        super().__init__(
            f"Rate limit reached: {limit} searches per {window_seconds}s",
            {"key": key, "limit": limit, "window_seconds": window_seconds},
        )
