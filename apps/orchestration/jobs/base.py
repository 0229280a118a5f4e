"""
Base class for analysis job kinds.

A job kind binds one entity model and one of its status columns to one tool
entrypoint, and knows how to:

- build the tool's input (context + extra files)
- interpret the tool's output files into a typed result
- write derived records for a successful result
- write fallback content for a failed run
- describe the pending notification for either outcome

The runner (apps.orchestration.runner) owns everything else: status
transitions, tool invocation, usage recording and error handling.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from django.conf import settings
from django.db import models
from django.db.models import Q

from apps.intelligence.tools.base import ToolInvocation
from apps.orchestration.state_machine import StatusMachine

logger = logging.getLogger(__name__)


@dataclass
class NotificationSpec:
    """Pending notification produced by a finished run."""

    event_type: str
    message: str
    action_url: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class BaseJob(ABC):
    """Abstract base class for job kinds."""

    name: ClassVar[str] = "base"
    entrypoint: ClassVar[str] = ""
    status_field: ClassVar[str] = ""
    started_at_field: ClassVar[str | None] = None
    update_timestamp: ClassVar[bool] = True
    output_files: ClassVar[tuple[str, ...]] = ()
    usage_files: ClassVar[tuple[str, ...]] = ("usage.json",)
    default_timeout_s: ClassVar[int] = 300

    def __init__(
        self, entity: models.Model, params: dict[str, Any] | None = None, run_id: str = ""
    ):
        self.entity = entity
        self.params = params or {}
        self.run_id = run_id

    # ------------------------------------------------------------------
    # Entity binding
    # ------------------------------------------------------------------

    @classmethod
    @abstractmethod
    def get_model(cls) -> type[models.Model]:
        """Model whose status column this job drives."""
        ...  # pragma: no cover

    @classmethod
    def scope(cls) -> Q:
        """Rows of the model this job kind applies to."""
        return Q()

    @classmethod
    def start_condition(cls) -> Q:
        """Extra guard a row must satisfy to be claimed."""
        return cls.scope()

    @classmethod
    def status_machine(cls) -> StatusMachine:
        return StatusMachine(
            model=cls.get_model(),
            field=cls.status_field,
            started_at_field=cls.started_at_field,
            start_condition=cls.start_condition(),
            update_timestamp=cls.update_timestamp,
        )

    @classmethod
    def load(cls, entity_id: int) -> models.Model | None:
        return cls.get_model().objects.filter(pk=entity_id).first()

    @property
    def project(self):
        return self.entity.project

    @property
    def entity_type(self) -> str:
        return type(self.entity).__name__

    # ------------------------------------------------------------------
    # Tool input
    # ------------------------------------------------------------------

    def build_invocation(self, workdir: Path) -> ToolInvocation:
        return ToolInvocation(
            job_type=self.name,
            entrypoint=self.entrypoint or self.name,
            workdir=workdir,
            context=self.build_context(),
            files=self.build_files(),
            env=self.build_env(),
            timeout_s=self.timeout_s,
            output_files=self.output_files,
            usage_files=self.usage_files,
        )

    @property
    def timeout_s(self) -> int:
        timeouts = getattr(settings, "ANALYSIS_TIMEOUT_SECONDS", {}) or {}
        return int(timeouts.get(self.name, self.default_timeout_s))

    @abstractmethod
    def build_context(self) -> dict[str, Any]:
        """JSON-serializable context written to input/context.json."""
        ...  # pragma: no cover

    def build_files(self) -> dict[str, str]:
        return {}

    def build_env(self) -> dict[str, str]:
        env = {}
        repo = self.project.primary_repository
        if repo is not None:
            env["GITHUB_REPO"] = repo.full_name
        return env

    def project_context(self) -> dict[str, Any]:
        project = self.project
        return {
            "project_name": project.name,
            "project_overview": project.project_overview,
            "analysis_summary": project.analysis_summary,
            "tech_stack": (project.analysis_metadata or {}).get("tech_stack", []),
            "repositories": project.repositories_for_analysis(),
        }

    # ------------------------------------------------------------------
    # Tool output
    # ------------------------------------------------------------------

    @abstractmethod
    def interpret(self, output_dir: Path) -> Any:
        """Parse output files into a result.

        Raises:
            ToolOutputError: Required output is missing or malformed.
        """
        ...  # pragma: no cover

    @abstractmethod
    def write_result(self, result: Any) -> None:
        """Create/update derived records. Runs in the completing transaction."""
        ...  # pragma: no cover

    def write_fallback(self, error: Exception) -> None:
        """Write AI-free content so a failed run is still visible. Default: nothing."""

    def completed_fields(self, result: Any) -> dict[str, Any]:
        """Extra columns written with the transition to ``completed``."""
        return {}

    def failed_fields(self, error: Exception) -> dict[str, Any]:
        """Extra columns written with the transition to ``failed``."""
        return {}

    # ------------------------------------------------------------------
    # Notifications and chaining
    # ------------------------------------------------------------------

    def notification(
        self, result: Any = None, error: Exception | None = None
    ) -> NotificationSpec | None:
        return None

    def after_success(self, result: Any) -> None:
        """Hook run after the completing transaction commits."""

    def after_failure(self, error: Exception) -> None:
        """Hook run after the failing transaction commits."""
