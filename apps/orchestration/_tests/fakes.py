"""Test doubles for the external analysis tool."""

import json

from apps.intelligence.tools.base import BaseAnalysisTool, ToolOutcome

USAGE_REPORT = {
    "session_id": "sess-1",
    "num_turns": 3,
    "duration_ms": 1200,
    "total_cost_usd": 0.0125,
    "usage": {"input_tokens": 100, "output_tokens": 50},
}


class ScriptedTool(BaseAnalysisTool):
    """Writes canned output files and reports a canned exit status.

    ``outputs`` maps file names to text, bytes or JSON-serializable values.
    """

    name = "scripted"

    def __init__(self, outputs=None, success=True, timed_out=False, error="", raises=None):
        super().__init__()
        self.outputs = outputs or {}
        self.success = success
        self.timed_out = timed_out
        self.error = error
        self.raises = raises
        self.invocations = []

    def _execute(self, invocation):
        self.invocations.append(invocation)
        if self.raises is not None:
            raise self.raises
        for name, content in self.outputs.items():
            path = invocation.output_dir / name
            if isinstance(content, bytes):
                path.write_bytes(content)
            elif isinstance(content, str):
                path.write_text(content, encoding="utf-8")
            else:
                path.write_text(json.dumps(content), encoding="utf-8")
        return ToolOutcome(
            success=self.success and not self.timed_out,
            output_dir=invocation.output_dir,
            exit_code=0 if self.success else 1,
            timed_out=self.timed_out,
            error=self.error,
        )
