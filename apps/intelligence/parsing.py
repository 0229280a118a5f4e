"""Helpers for reading result files written by the analysis tool."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from apps.intelligence.exceptions import ToolOutputError

_FENCE_OPEN = re.compile(r"\A```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*\Z")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def read_output_file(output_dir: Path | str, filename: str) -> str | None:
    """Return the stripped file content, or None when missing or blank."""
    path = Path(output_dir) / filename
    if not path.is_file():
        return None
    try:
        content = path.read_text(encoding="utf-8").strip()
    except UnicodeDecodeError as e:
        raise ToolOutputError(f"{filename} is not valid UTF-8: {e}") from e
    return content or None


def strip_code_fences(raw: str) -> str:
    content = raw.strip()
    if content.startswith("```"):
        content = _FENCE_OPEN.sub("", content)
        content = _FENCE_CLOSE.sub("", content)
    return content.strip()


def extract_json(raw: str) -> str:
    """Strip markdown fences and isolate the outermost JSON object, if any."""
    content = strip_code_fences(raw)
    if content.startswith("["):
        return content
    match = _JSON_OBJECT.search(content)
    return match.group(0) if match else content


def parse_json(raw: str, *, filename: str = "output") -> Any:
    try:
        return json.loads(extract_json(raw))
    except json.JSONDecodeError as e:
        raise ToolOutputError(f"{filename} is not valid JSON: {e}") from e


def load_json_output(
    output_dir: Path | str, filename: str, *, required: bool = True, default: Any = None
) -> Any:
    """Read and parse a JSON result file.

    Raises:
        ToolOutputError: The file is required but missing, or is not valid JSON.
    """
    raw = read_output_file(output_dir, filename)
    if raw is None:
        if required:
            raise ToolOutputError(f"Expected output file {filename} was not produced")
        return default
    return parse_json(raw, filename=filename)


def require_text_output(output_dir: Path | str, filename: str) -> str:
    raw = read_output_file(output_dir, filename)
    if raw is None:
        raise ToolOutputError(f"Expected output file {filename} was not produced")
    return raw
