# agent/errors.py — Splice v1
"""
Error kinds raised at component seams.

Only SandboxUnavailable is fatal for a turn. Everything else is caught by
the engine or the session and attached to the file or step it affected.
"""
from __future__ import annotations


class SpliceError(Exception):
    """Base class for every pipeline error."""


class IntentAnalysisFailure(SpliceError):
    """The classifier produced output we could not parse, even after a retry."""


class SearchNoMatch(SpliceError):
    """The search plan matched nothing in the manifest."""


class ParseTruncation(SpliceError):
    """The stream ended while a file operation was still open."""

    def __init__(self, path: str, message: str = ""):
        super().__init__(message or f"stream ended inside {path}")
        self.path = path


class PathSafetyViolation(SpliceError):
    """An operation targets a path outside the project root."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"unsafe path '{path}': {reason}")
        self.path = path
        self.reason = reason


class PackageInstallFailure(SpliceError):
    def __init__(self, packages, exit_code: int, stderr: str = ""):
        super().__init__(
            f"install of {', '.join(packages)} exited {exit_code}"
        )
        self.packages = list(packages)
        self.exit_code = exit_code
        self.stderr = stderr


class SandboxUnavailable(SpliceError):
    """The sandbox cannot be reached. No further writes are attempted."""


class CompletionError(SpliceError):
    """Transport-level failure talking to a completion provider."""
