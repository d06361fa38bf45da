"""Custom exception hierarchy for romcurator.

Centralizes every project-specific exception so callers can tell apart
recoverable per-ROM problems, per-candidate failures and systemic errors.
"""

from __future__ import annotations
from typing import Optional, Any, Iterable


# ============================================================================
# BASE EXCEPTIONS
# ============================================================================

class RomCuratorError(Exception):
    """Base exception for every romcurator error.

    All custom exceptions in the project inherit from this class.
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ============================================================================
# CONFIGURATION & INITIALIZATION ERRORS
# ============================================================================

class ConfigurationError(RomCuratorError):
    """Invalid or inconsistent options."""
    pass


class DependencyError(RomCuratorError):
    """An external tool is not available."""

    def __init__(self, tool_name: str, message: str = None):
        msg = message or f"Required tool not found: {tool_name}"
        super().__init__(msg, {"tool": tool_name})
        self.tool_name = tool_name


# ============================================================================
# FILE OPERATION ERRORS
# ============================================================================

class FileOperationError(RomCuratorError):
    """Base error for file operations."""

    def __init__(self, path: str, message: str, details: Optional[dict] = None):
        details = details or {}
        details["path"] = path
        super().__init__(message, details)
        self.path = path


class FileReadError(FileOperationError):
    """Failed to read a file."""
    pass


class FileWriteError(FileOperationError):
    """Failed to write a file."""
    pass


class FileMoveError(FileOperationError):
    """Failed to move a file."""
    pass


class ArchiveError(FileOperationError):
    """Failed to list, extract or create an archive."""

    def __init__(self, path: str, reason: str = ""):
        msg = f"Archive operation failed: {path}"
        if reason:
            msg += f" - {reason}"
        super().__init__(path, msg, {"reason": reason})


# ============================================================================
# VALIDATION & INTEGRITY ERRORS
# ============================================================================

class ValidationError(RomCuratorError):
    """Data or file validation failed."""
    pass


class TokenReplacementError(ValidationError):
    """Output path template kept tokens that could not be resolved."""

    def __init__(self, tokens: Iterable[str], template: str = ""):
        self.tokens = list(tokens)
        super().__init__(
            f"failed to replace output token(s): {', '.join(self.tokens)}",
            {"template": template} if template else None,
        )


class PipelineHaltError(ValidationError):
    """A post-processing stage failed in a way that invalidates the whole DAT."""

    def __init__(self, stage: str, reason: str = ""):
        msg = f"Candidate pipeline halted at {stage}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"stage": stage})
        self.stage = stage


# ============================================================================
# DAT ERRORS
# ============================================================================

class DATError(RomCuratorError):
    """Error related to DAT files."""
    pass


class DATParseError(DATError):
    """Failed to parse a DAT file."""

    def __init__(self, path: str, reason: str = ""):
        msg = f"Failed to parse DAT {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"path": path, "reason": reason})


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def format_exception_chain(exc: BaseException, include_traceback: bool = False) -> str:
    """Format an exception together with its chain of causes.

    Args:
        exc: Exception to format
        include_traceback: Whether to include the full traceback

    Returns:
        String with the exception and its causes
    """
    import traceback

    if include_traceback:
        return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    messages = []
    current = exc
    while current is not None:
        if isinstance(current, RomCuratorError):
            messages.append(str(current))
        else:
            messages.append(f"{type(current).__name__}: {current}")
        current = getattr(current, "__cause__", None)

    return " -> ".join(messages)
