"""Module errors: structured error taxonomy for the trace graph pipeline."""
#
from enum import Enum
from typing import Dict, Any, Optional
# PURPOSE:
# Provides a structured error taxonomy for tracegraph with error codes,
# typed exceptions, and consistent error handling across the pipeline.
#
# ERROR CODE FORMAT:
# - TRACE_XXX: Trace document / parsing errors
# - LAYOUT_XXX: Layout computation errors
# - CONFIG_XXX: Configuration errors
# - SYSTEM_XXX: Anything else
#
# FATAL vs NON-FATAL:
# - MalformedTraceError aborts the pipeline; no partial graph is produced.
# - DecodeFailure, unresolved parent references and LayoutUnavailable are
#   absorbed where they happen (raw text fallback, dropped edge, hierarchical
#   fallback) and only logged.
#
# USAGE:
#   from tracegraph.errors import MalformedTraceError, ErrorCode
#
#   raise MalformedTraceError(
#       "No request element found in XML",
#       details={"missing": "request"}
#   )
#
class ErrorCode(Enum):
    # Trace Errors
    TRACE_MALFORMED = "TRACE_001"
    TRACE_DECODE_FAILED = "TRACE_002"
    TRACE_UNRESOLVED_REFERENCE = "TRACE_003"
    TRACE_TOO_LARGE = "TRACE_004"

    # Layout Errors
    LAYOUT_UNAVAILABLE = "LAYOUT_001"

    # Config Errors
    CONFIG_INVALID = "CONFIG_001"

    # System Errors
    SYSTEM_INTERNAL_ERROR = "SYSTEM_001"


class TraceGraphError(Exception):
    """
    Base exception class for tracegraph with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "TRACE_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}

        # Build exception message with code for easy debugging
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON serialization.

        Returns:
            Dictionary with code, message and details
        """
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        import json
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceGraphError":
        """
        Deserialize error from dictionary.

        Args:
            data: Dictionary with code, message, details

        Returns:
            TraceGraphError instance
        """
        code = ErrorCode(data["code"])
        return cls(code, data["message"], data.get("details", {}))


class MalformedTraceError(TraceGraphError):
    """Raised when the trace document is unparsable, too large, or misses finding/request/events."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.TRACE_MALFORMED,
    ):
        super().__init__(code, message, details)


class DecodeFailure(TraceGraphError):
    """Raised by the payload codec when an encoded body cannot be decoded."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.TRACE_DECODE_FAILED, message, details)


class LayoutUnavailable(TraceGraphError):
    """Raised by the flow layout when no layering exists (e.g. a cyclic edge set)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.LAYOUT_UNAVAILABLE, message, details)


# ============================================================================
# Convenience Functions
# ============================================================================

def handle_error(error: Exception, context: Optional[str] = None) -> TraceGraphError:
    """
    Convert a generic exception to a TraceGraphError.

    Args:
        error: The original exception
        context: Optional context string (e.g., "while building graph")

    Returns:
        TraceGraphError with appropriate code and message
    """
    if isinstance(error, TraceGraphError):
        return error

    error_type = type(error).__name__
    message = str(error)
    if context:
        message = f"{context}: {message}"

    return TraceGraphError(
        code=ErrorCode.SYSTEM_INTERNAL_ERROR,
        message=message,
        details={
            "original_type": error_type,
            "original_message": str(error)
        }
    )


__all__ = [
    "ErrorCode",
    "TraceGraphError",
    "MalformedTraceError",
    "DecodeFailure",
    "LayoutUnavailable",
    "handle_error",
]
