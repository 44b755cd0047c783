"""Structured exception hierarchy for polling sources.

Every fatal condition the operator can hit maps to one of these types.
None of them are retried inside the operator; the engine decides whether
to restart the instance.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "SourceError",
    "ConnectionError",
    "ConfigurationError",
    "QueryExecutionError",
    "ConversionError",
    "LifecycleError",
]


class SourceError(Exception):
    """Base exception for all source operator errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        operator: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.operator = operator
        self.details = details or {}
        self.suggestion = suggestion
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.message]

        if self.operator:
            parts.insert(0, f"[{self.operator}]")

        if self.details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in self.details.items())

        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")

        return "\n".join(parts) if len(parts) > 1 else self.message

    def add_detail(self, key: str, value: Any) -> None:
        """Attach context learned after the error was raised."""
        self.details[key] = value
        self.args = (self._render(),)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "operator": self.operator,
            "details": self.details,
            "suggestion": self.suggestion,
        }


def _cause_details(details: Dict[str, Any], cause: Optional[BaseException]) -> None:
    if cause is not None:
        details["cause"] = str(cause)
        details["cause_type"] = type(cause).__name__


class ConnectionError(SourceError):
    """The store is unreachable or rejected the credentials.

    Raised from setup. Fatal, never retried by the operator.
    """

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        driver: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.url = url
        self.driver = driver
        self.cause = cause

        details = kwargs.pop("details", {})
        if driver:
            details["driver"] = driver
        if url:
            details["url"] = url
        _cause_details(details, cause)

        suggestion = kwargs.pop("suggestion", None) or (
            "Check that the store is reachable and credentials are correct. "
            "Verify environment variables are set."
        )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class ConfigurationError(SourceError):
    """Configuration is invalid or a query could not be produced."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        issues: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value
        self.issues = issues or []

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        if self.issues:
            issue_lines = "\n".join(f"  - {issue}" for issue in self.issues)
            message = f"{message}\n\nIssues found:\n{issue_lines}"

        super().__init__(message, details=details, **kwargs)


class QueryExecutionError(SourceError):
    """The store rejected or failed a query mid-execution.

    The connection is already closed by the time this reaches the engine.
    """

    def __init__(
        self,
        message: str,
        *,
        query: Optional[str] = None,
        rows_emitted: Optional[int] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.query = query
        self.rows_emitted = rows_emitted
        self.cause = cause

        details = kwargs.pop("details", {})
        if query:
            details["query"] = query
        if rows_emitted is not None:
            details["rows_emitted"] = rows_emitted
        _cause_details(details, cause)

        super().__init__(message, details=details, **kwargs)


class ConversionError(SourceError):
    """A row could not be turned into a tuple.

    Rows emitted before the failing one in the same cycle stay emitted.
    """

    def __init__(
        self,
        message: str,
        *,
        row_number: Optional[int] = None,
        row: Any = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.row_number = row_number
        self.row = row
        self.cause = cause

        details = kwargs.pop("details", {})
        if row_number is not None:
            details["row_number"] = row_number
        if row is not None:
            details["row"] = repr(row)
        _cause_details(details, cause)

        super().__init__(message, details=details, **kwargs)


class LifecycleError(SourceError):
    """An engine call arrived in a lifecycle state that cannot serve it."""

    def __init__(
        self,
        message: str,
        *,
        state: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.state = state

        details = kwargs.pop("details", {})
        if state:
            details["state"] = state

        super().__init__(message, details=details, **kwargs)
