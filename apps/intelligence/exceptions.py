"""Exceptions raised around external analysis tool runs."""


class AnalysisToolError(Exception):
    """The external tool failed (non-zero exit, crash, API error)."""


class ToolTimeoutError(AnalysisToolError):
    """The external tool did not finish within its time budget."""


class ToolOutputError(AnalysisToolError):
    """The tool finished but its output is missing or malformed."""
