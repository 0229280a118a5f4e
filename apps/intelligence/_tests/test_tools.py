"""Tests for the external analysis tool implementations."""

import json
import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from django.test import SimpleTestCase, override_settings

from apps.intelligence.exceptions import AnalysisToolError, ToolTimeoutError
from apps.intelligence.tools import ClaudeApiTool, DockerAnalysisTool, get_tool
from apps.intelligence.tools.base import BaseAnalysisTool, ToolInvocation, ToolOutcome


def make_invocation(tmp_path: Path, **kwargs) -> ToolInvocation:
    kwargs.setdefault("job_type", "analyze_commit")
    kwargs.setdefault("entrypoint", "analyze_commit")
    kwargs.setdefault("context", {"project_name": "Acme"})
    return ToolInvocation(workdir=tmp_path / "run", **kwargs)


class TestToolOutcome:
    def test_success_does_not_raise(self, tmp_path):
        ToolOutcome(success=True, output_dir=tmp_path).raise_for_status()

    def test_timeout_raises_timeout_error(self, tmp_path):
        with pytest.raises(ToolTimeoutError):
            ToolOutcome(success=False, output_dir=tmp_path, timed_out=True).raise_for_status()

    def test_failure_message_mentions_exit_code(self, tmp_path):
        with pytest.raises(AnalysisToolError, match="exited with 3"):
            ToolOutcome(success=False, output_dir=tmp_path, exit_code=3).raise_for_status()


class EchoTool(BaseAnalysisTool):
    name = "echo"
    unsupported_entrypoints = frozenset({"render_step_image"})

    def _execute(self, invocation):
        return ToolOutcome(success=True, output_dir=invocation.output_dir, exit_code=0)


class TestBaseAnalysisTool:
    def test_prepare_writes_context_and_files(self, tmp_path):
        invocation = make_invocation(tmp_path, files={"mockup.html": "<p/>"})

        EchoTool().invoke(invocation)

        context = json.loads((invocation.input_dir / "context.json").read_text())
        assert context == {"project_name": "Acme"}
        assert (invocation.input_dir / "mockup.html").read_text() == "<p/>"
        assert invocation.output_dir.is_dir()

    def test_unsupported_entrypoint_fails_without_executing(self, tmp_path):
        tool = EchoTool()
        with patch.object(tool, "_execute") as execute:
            outcome = tool.invoke(make_invocation(tmp_path, entrypoint="render_step_image"))
        execute.assert_not_called()
        assert not outcome.success
        assert "does not support" in outcome.error

    def test_redact_config(self):
        redacted = BaseAnalysisTool._redact_config({"api_key": "sk", "model": "m", "TOKEN": "t"})
        assert redacted == {"api_key": "***", "model": "m", "TOKEN": "***"}


class GetToolTests(SimpleTestCase):
    @override_settings(ANALYSIS_TOOL="claude", ANALYSIS_TOOL_CONFIG={"model": "claude-x"})
    def test_defaults_from_settings(self):
        tool = get_tool()
        self.assertIsInstance(tool, ClaudeApiTool)
        self.assertEqual(tool.model, "claude-x")

    def test_overrides_merge_over_settings(self):
        tool = get_tool("docker", image="analyzer:test")
        self.assertIsInstance(tool, DockerAnalysisTool)
        self.assertEqual(tool.image, "analyzer:test")

    def test_unknown_tool(self):
        with self.assertRaises(ValueError):
            get_tool("nope")


class TestDockerAnalysisTool:
    def test_build_command(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-secret")
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        tool = DockerAnalysisTool(image="analyzer:1")
        invocation = make_invocation(tmp_path, env={"COMMIT_SHA": "abc", "GITHUB_REPO": "acme/api"})

        cmd = tool.build_command(invocation)

        assert cmd[:3] == ["docker", "run", "--rm"]
        assert "ANTHROPIC_API_KEY=sk-secret" in cmd
        assert "COMMIT_SHA=abc" in cmd
        assert f"{invocation.input_dir}:/input:ro" in cmd
        assert f"{invocation.output_dir}:/output" in cmd
        assert cmd[-3:] == ["--entrypoint", "/analyze_commit.sh", "analyzer:1"]

    def test_oauth_token_takes_priority(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "oauth")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk")
        assert DockerAnalysisTool().auth_args() == ["-e", "CLAUDE_CODE_OAUTH_TOKEN=oauth"]

    def test_redact_command(self):
        cmd = ["docker", "-e", "ANTHROPIC_API_KEY=sk", "-e", "COMMIT_SHA=abc"]
        assert DockerAnalysisTool.redact_command(cmd) == [
            "docker",
            "-e",
            "ANTHROPIC_API_KEY=***",
            "-e",
            "COMMIT_SHA=abc",
        ]

    def test_host_volume_path(self, settings):
        settings.HOST_PROJECT_PATH = "/srv/app"
        path = str(Path(settings.BASE_DIR) / "tmp" / "analysis" / "x")
        assert DockerAnalysisTool().host_volume_path(path) == "/srv/app/tmp/analysis/x"

    @patch("apps.intelligence.tools.docker.subprocess.run")
    def test_execute_success(self, run, invocation):
        run.side_effect = [
            SimpleNamespace(stdout="imageid\n", returncode=0),
            SimpleNamespace(returncode=0, stdout="done", stderr=""),
        ]

        outcome = DockerAnalysisTool(image="analyzer:1").invoke(invocation)

        assert outcome.success
        assert outcome.exit_code == 0

    @patch("apps.intelligence.tools.docker.subprocess.run")
    def test_execute_non_zero_exit(self, run, tmp_path):
        run.side_effect = [
            SimpleNamespace(stdout="imageid\n", returncode=0),
            SimpleNamespace(returncode=2, stdout="", stderr="clone failed"),
        ]

        outcome = DockerAnalysisTool(image="analyzer:1").invoke(make_invocation(tmp_path))

        assert not outcome.success
        assert "clone failed" in outcome.error

    @patch("apps.intelligence.tools.docker.subprocess.run")
    def test_execute_timeout(self, run, tmp_path):
        run.side_effect = [
            SimpleNamespace(stdout="imageid\n", returncode=0),
            subprocess.TimeoutExpired(cmd="docker", timeout=5, output=b"partial"),
        ]

        tool = DockerAnalysisTool(image="analyzer:1")
        outcome = tool.invoke(make_invocation(tmp_path, timeout_s=5))

        assert outcome.timed_out
        assert outcome.stdout == "partial"
        with pytest.raises(ToolTimeoutError):
            outcome.raise_for_status()

    @patch("apps.intelligence.tools.docker.subprocess.run")
    def test_builds_missing_image(self, run, tmp_path):
        run.side_effect = [
            SimpleNamespace(stdout="", returncode=0),
            SimpleNamespace(returncode=0, stdout="", stderr=""),
            SimpleNamespace(returncode=0, stdout="", stderr=""),
        ]

        tool = DockerAnalysisTool(image="analyzer:1", dockerfile_dir="/docker")
        tool.invoke(make_invocation(tmp_path))

        assert run.call_args_list[1].args[0] == ["docker", "build", "-t", "analyzer:1", "/docker"]


def fake_message(text, input_tokens=2_000_000, output_tokens=1_000_000):
    return SimpleNamespace(
        id="msg_1",
        content=[SimpleNamespace(text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


class TestClaudeApiTool:
    def test_writes_output_files_and_usage(self, tmp_path):
        tool = ClaudeApiTool(api_key="sk")
        files = {"content.md": "Body", "articles.json": {"articles": []}}
        invocation = make_invocation(tmp_path, output_files=("content.md", "articles.json"))

        with patch.object(tool, "_call_api", return_value=fake_message(json.dumps(files))) as call:
            outcome = tool.invoke(invocation)

        assert outcome.success
        assert (invocation.output_dir / "content.md").read_text() == "Body"
        assert json.loads((invocation.output_dir / "articles.json").read_text()) == {"articles": []}
        usage = json.loads((invocation.output_dir / "usage.json").read_text())
        assert usage["session_id"] == "msg_1"
        assert usage["total_cost_usd"] == pytest.approx(21.0)
        prompt = call.call_args.args[0]
        assert "Output files: content.md, articles.json" in prompt

    def test_usage_report_uses_first_expected_name(self, tmp_path):
        tool = ClaudeApiTool()
        invocation = make_invocation(
            tmp_path,
            job_type="analyze_codebase",
            usage_files=("usage_main.json", "usage_style.json"),
        )

        with patch.object(tool, "_call_api", return_value=fake_message('{"a.txt": "x"}', 1, 1)):
            tool.invoke(invocation)

        assert (invocation.output_dir / "usage_main.json").is_file()
        assert not (invocation.output_dir / "usage.json").exists()

    def test_fenced_response_is_accepted(self, tmp_path):
        tool = ClaudeApiTool()
        text = '```json\n{"title.txt": "Hello"}\n```'
        invocation = make_invocation(tmp_path)

        with patch.object(tool, "_call_api", return_value=fake_message(text, 1, 1)):
            outcome = tool.invoke(invocation)

        assert outcome.success
        assert (invocation.output_dir / "title.txt").read_text() == "Hello"

    def test_non_json_response_fails(self, invocation):
        tool = ClaudeApiTool()
        with patch.object(tool, "_call_api", return_value=fake_message("Sorry, I can't", 1, 1)):
            outcome = tool.invoke(invocation)
        assert not outcome.success
        assert "not a JSON" in outcome.error

    def test_api_error_fails_without_usage(self, tmp_path):
        tool = ClaudeApiTool()
        invocation = make_invocation(tmp_path)
        with patch.object(tool, "_call_api", side_effect=RuntimeError("overloaded")):
            outcome = tool.invoke(invocation)
        assert not outcome.success
        assert "overloaded" in outcome.error
        assert not (invocation.output_dir / "usage.json").exists()

    def test_render_is_unsupported(self, tmp_path):
        tool = ClaudeApiTool()
        tool._call_api = MagicMock()
        outcome = tool.invoke(make_invocation(tmp_path, entrypoint="render_step_image"))
        assert not outcome.success
        tool._call_api.assert_not_called()
