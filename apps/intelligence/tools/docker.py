"""
Docker-backed analysis tool.

Runs the claude-analyzer image with one entrypoint script per job kind.
The per-run input directory is mounted read-only at /input and the output
directory read-write at /output.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Any

from django.conf import settings

from apps.intelligence.tools.base import (
    SENSITIVE_PATTERNS,
    BaseAnalysisTool,
    ToolInvocation,
    ToolOutcome,
)

logger = logging.getLogger(__name__)

IMAGE_BUILD_TIMEOUT_S = 900


class DockerAnalysisTool(BaseAnalysisTool):
    """Analysis tool that runs a container per invocation."""

    name = "docker"
    description = "claude-analyzer container"

    def __init__(
        self,
        image: str = "",
        dockerfile_dir: str = "",
        network: str = "host",
        docker_bin: str = "docker",
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.image = image or getattr(settings, "ANALYSIS_DOCKER_IMAGE", "")
        self.dockerfile_dir = dockerfile_dir or getattr(settings, "ANALYSIS_DOCKERFILE_DIR", "")
        self.network = network
        self.docker_bin = docker_bin

    def _execute(self, invocation: ToolInvocation) -> ToolOutcome:
        output_dir = invocation.output_dir
        try:
            self.ensure_image()
        except (OSError, subprocess.SubprocessError) as e:
            return ToolOutcome(
                success=False, output_dir=output_dir, error=f"Image build failed: {e}"
            )

        cmd = self.build_command(invocation)
        logger.debug("Docker command: %s", " ".join(self.redact_command(cmd)))

        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=invocation.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            return ToolOutcome(
                success=False,
                output_dir=output_dir,
                timed_out=True,
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
                error=f"Analysis timed out after {invocation.timeout_s} seconds",
            )
        except OSError as e:
            return ToolOutcome(
                success=False, output_dir=output_dir, error=f"Failed to start docker: {e}"
            )

        error = ""
        if completed.returncode != 0:
            error = f"Docker command failed ({completed.returncode}): {completed.stderr[-2000:]}"
        return ToolOutcome(
            success=completed.returncode == 0,
            output_dir=output_dir,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            error=error,
        )

    def build_command(self, invocation: ToolInvocation) -> list[str]:
        cmd = [self.docker_bin, "run", "--rm"]
        cmd += self.auth_args()
        for key, value in sorted(invocation.env.items()):
            cmd += ["-e", f"{key}={value}"]
        cmd += [
            "-v",
            f"{self.host_volume_path(invocation.input_dir)}:/input:ro",
            "-v",
            f"{self.host_volume_path(invocation.output_dir)}:/output",
        ]
        if self.network:
            cmd += ["--network", self.network]
        cmd += ["--entrypoint", f"/{invocation.entrypoint}.sh", self.image]
        return cmd

    def auth_args(self) -> list[str]:
        """Credentials for the analyzer: an OAuth token takes priority over an API key."""
        oauth_token = os.environ.get("CLAUDE_CODE_OAUTH_TOKEN", "")
        if oauth_token:
            return ["-e", f"CLAUDE_CODE_OAUTH_TOKEN={oauth_token}"]
        return ["-e", f"ANTHROPIC_API_KEY={os.environ.get('ANTHROPIC_API_KEY', '')}"]

    def host_volume_path(self, path: Path | str) -> str:
        """Translate an in-container path to the host path for sibling-container mounts."""
        path = str(path)
        host_root = getattr(settings, "HOST_PROJECT_PATH", "")
        if not host_root:
            return path
        project_root = str(settings.BASE_DIR)
        if path.startswith(project_root):
            return host_root.rstrip("/") + path[len(project_root):]
        return path

    def ensure_image(self) -> None:
        result = subprocess.run(
            [self.docker_bin, "images", "-q", self.image],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.stdout.strip():
            return

        logger.info("Building analyzer image %s from %s", self.image, self.dockerfile_dir)
        subprocess.run(
            [self.docker_bin, "build", "-t", self.image, self.dockerfile_dir],
            capture_output=True,
            text=True,
            check=True,
            timeout=IMAGE_BUILD_TIMEOUT_S,
        )

    @staticmethod
    def redact_command(cmd: list[str]) -> list[str]:
        redacted = []
        for part in cmd:
            key, sep, _ = part.partition("=")
            if sep and any(pattern in key.lower() for pattern in SENSITIVE_PATTERNS):
                redacted.append(f"{key}=***")
            else:
                redacted.append(part)
        return redacted


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
