"""Shared test fixtures for intelligence app."""

import pytest

from apps.intelligence.tools.base import ToolInvocation


@pytest.fixture
def invocation(tmp_path):
    """A commit-analysis invocation rooted in a temporary directory."""
    return ToolInvocation(
        job_type="analyze_commit",
        entrypoint="analyze_commit",
        workdir=tmp_path / "run",
        context={"project_name": "Acme"},
    )
