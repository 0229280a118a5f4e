"""
External analysis tool implementations.
"""

from django.conf import settings

from apps.intelligence.tools.base import (
    AnalysisToolError,
    BaseAnalysisTool,
    ToolInvocation,
    ToolOutcome,
    ToolOutputError,
    ToolTimeoutError,
)
from apps.intelligence.tools.claude import ClaudeApiTool
from apps.intelligence.tools.docker import DockerAnalysisTool

__all__ = [
    "AnalysisToolError",
    "BaseAnalysisTool",
    "ClaudeApiTool",
    "DockerAnalysisTool",
    "ToolInvocation",
    "ToolOutcome",
    "ToolOutputError",
    "ToolTimeoutError",
    "TOOL_REGISTRY",
    "get_tool",
]

TOOL_REGISTRY: dict[str, type[BaseAnalysisTool]] = {
    "docker": DockerAnalysisTool,
    "claude": ClaudeApiTool,
}


def get_tool(name: str | None = None, **config) -> BaseAnalysisTool:
    """
    Get an analysis tool instance.

    Args:
        name: Tool name; defaults to settings.ANALYSIS_TOOL.
        **config: Overrides merged over settings.ANALYSIS_TOOL_CONFIG.

    Raises:
        ValueError: If the tool name is not registered.
    """
    name = name or getattr(settings, "ANALYSIS_TOOL", "docker")
    if name not in TOOL_REGISTRY:
        raise ValueError(f"Unknown analysis tool: {name}. Available: {', '.join(TOOL_REGISTRY)}")
    merged = {**(getattr(settings, "ANALYSIS_TOOL_CONFIG", {}) or {}), **config}
    return TOOL_REGISTRY[name](**merged)
