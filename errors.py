# Doc-Pipeline/errors.py
"""Error taxonomy shared by every transformation step.

Everything below the orchestrator raises one of these; the orchestrator
catches them at its boundary and hands them back as the error half of an
``(output, error)`` pair. ``kind`` is the stable, user-facing name and
``status`` the HTTP code the web layer answers with.
"""


class TransformError(Exception):
    """Base class for every failure reported back to a caller."""

    kind = "InternalError"
    status = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        payload = {"success": False, "error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(TransformError):
    kind = "ValidationError"
    status = 400


class UnsupportedConversion(TransformError):
    kind = "UnsupportedConversion"
    status = 400


class NoPagesProcessed(TransformError):
    kind = "NoPagesProcessed"
    status = 422


class IncorrectPasswordOrUnsupported(TransformError):
    kind = "IncorrectPasswordOrUnsupported"
    status = 400


# --- Tool failures ---

class ToolError(TransformError):
    """Failure of a single external tool invocation."""

    kind = "ToolError"
    status = 502

    def __init__(self, message, tool=None, details=None):
        super().__init__(message, details)
        self.tool = tool


class ToolUnavailable(ToolError):
    kind = "ToolUnavailable"
    status = 503


class ToolTimeout(ToolError):
    kind = "ToolTimeout"
    status = 504


class ToolExecutionFailed(ToolError):
    kind = "ToolExecutionFailed"

    def __init__(self, message, tool=None, returncode=None, stderr_tail=""):
        details = {"returncode": returncode}
        if stderr_tail:
            details["stderr"] = stderr_tail
        super().__init__(message, tool, details)
        self.returncode = returncode
        self.stderr_tail = stderr_tail


class ToolOutputMissing(ToolError):
    kind = "ToolOutputMissing"


class ToolChainExhausted(ToolError):
    kind = "ToolChainExhausted"

    def __init__(self, message, attempts):
        reasons = [{"tool": a.label, "error": a.error.kind, "message": a.error.message} for a in attempts]
        super().__init__(message, details={"attempts": reasons})
        self.attempts = list(attempts)


class ArtifactCommitError(RuntimeError):
    """Raised in strict mode when a request tries to commit a second artifact."""
