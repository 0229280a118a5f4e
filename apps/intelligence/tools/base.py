"""
Base interface for the external analysis tool.

The tool is opaque: the pipeline hands it a working directory containing
``input/context.json`` (plus any extra input files) and an empty
``output/`` directory, waits for it to finish or time out, and then reads
the job-specific result files and usage report(s) from ``output/``.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from apps.intelligence.exceptions import AnalysisToolError, ToolOutputError, ToolTimeoutError

__all__ = [
    "AnalysisToolError",
    "BaseAnalysisTool",
    "ToolInvocation",
    "ToolOutcome",
    "ToolOutputError",
    "ToolTimeoutError",
]

logger = logging.getLogger(__name__)

SENSITIVE_PATTERNS = {"key", "secret", "token", "password", "api"}


@dataclass
class ToolInvocation:
    """Everything the tool needs for one run.

    Attributes:
        job_type: Job kind name (used for logging and telemetry).
        entrypoint: Tool entrypoint for this job kind (e.g. 'analyze_commit').
        workdir: Per-run directory; ``input/`` and ``output/`` live under it.
        context: Serialized to ``input/context.json``.
        files: Extra input files, name -> text content.
        env: Extra environment for the tool process.
        timeout_s: Hard time budget.
        output_files: Result files the job expects, used by tools that must
            produce them explicitly (the API tool) and for logging.
        usage_files: Usage report names the job reads back; a tool that writes a
            single report uses the first one.
    """

    job_type: str
    entrypoint: str
    workdir: Path
    context: dict[str, Any] = field(default_factory=dict)
    files: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    timeout_s: int = 300
    output_files: tuple[str, ...] = ()
    usage_files: tuple[str, ...] = ("usage.json",)

    @property
    def input_dir(self) -> Path:
        return self.workdir / "input"

    @property
    def output_dir(self) -> Path:
        return self.workdir / "output"


@dataclass
class ToolOutcome:
    """Result of one tool run. ``success`` reflects the exit signal only."""

    success: bool
    output_dir: Path
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str = ""
    timed_out: bool = False
    duration_ms: float = 0.0

    def raise_for_status(self) -> None:
        if self.timed_out:
            raise ToolTimeoutError(self.error or "Analysis tool timed out")
        if not self.success:
            raise AnalysisToolError(self.error or f"Analysis tool exited with {self.exit_code}")


class BaseAnalysisTool(ABC):
    """Abstract base class for external analysis tool implementations."""

    name: str = "base"
    description: str = "Base analysis tool"

    # Entrypoints this tool cannot serve (e.g. image rendering without a browser).
    unsupported_entrypoints: frozenset[str] = frozenset()

    def __init__(self, **config: Any) -> None:
        self.config = config
        logger.debug("Configured %s tool: %s", self.name, self._redact_config(config))

    def invoke(self, invocation: ToolInvocation) -> ToolOutcome:
        """Prepare the working directory and run the tool.

        Never raises for tool-side failures; they are reported on the outcome.
        """
        self._prepare(invocation)
        start = time.perf_counter()

        if invocation.entrypoint in self.unsupported_entrypoints:
            outcome = ToolOutcome(
                success=False,
                output_dir=invocation.output_dir,
                error=f"{self.name} tool does not support {invocation.entrypoint}",
            )
        else:
            logger.info(
                "Invoking %s tool for job=%s (timeout=%ss)",
                self.name,
                invocation.job_type,
                invocation.timeout_s,
            )
            outcome = self._execute(invocation)

        outcome.duration_ms = (time.perf_counter() - start) * 1000
        self._log_outcome(invocation, outcome)
        return outcome

    @abstractmethod
    def _execute(self, invocation: ToolInvocation) -> ToolOutcome:
        """Run the tool against a prepared working directory."""
        ...  # pragma: no cover

    def _prepare(self, invocation: ToolInvocation) -> None:
        invocation.input_dir.mkdir(parents=True, exist_ok=True)
        invocation.output_dir.mkdir(parents=True, exist_ok=True)
        # The tool may run as a different uid (container); output must be writable.
        invocation.output_dir.chmod(0o777)

        (invocation.input_dir / "context.json").write_text(
            json.dumps(invocation.context, default=str, indent=2), encoding="utf-8"
        )
        for name, content in invocation.files.items():
            (invocation.input_dir / name).write_text(content or "", encoding="utf-8")

    def _log_outcome(self, invocation: ToolInvocation, outcome: ToolOutcome) -> None:
        produced = []
        if outcome.output_dir.exists():
            produced = sorted(p.name for p in outcome.output_dir.iterdir())
        logger.info(
            "%s tool finished job=%s success=%s exit=%s in %.0fms; output files: %s",
            self.name,
            invocation.job_type,
            outcome.success,
            outcome.exit_code,
            outcome.duration_ms,
            ", ".join(produced) or "(none)",
        )
        if outcome.stdout:
            logger.debug("%s stdout: %s", invocation.job_type, outcome.stdout[:500])
        if outcome.stderr:
            logger.debug("%s stderr: %s", invocation.job_type, outcome.stderr[:500])

    @staticmethod
    def _redact_config(config: dict[str, Any]) -> dict[str, Any]:
        """
        Redact sensitive values from tool configuration.

        Any key containing a word from SENSITIVE_PATTERNS (case-insensitive)
        will have its value replaced with '***'.
        """
        redacted = {}
        for key, value in config.items():
            key_lower = key.lower()
            if any(pattern in key_lower for pattern in SENSITIVE_PATTERNS):
                redacted[key] = "***"
            else:
                redacted[key] = value
        return redacted
