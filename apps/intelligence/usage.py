"""
Usage telemetry recording.

The external tool writes a usage report (``usage.json`` by default) next to
its primary output. Recording it must never fail a job: a missing report is
a warning, and malformed JSON, unreadable files, unexpected shapes or
database errors are logged and swallowed.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from apps.intelligence.models import UsageRecord

logger = logging.getLogger(__name__)

DEFAULT_USAGE_FILE = "usage.json"


def _int(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return None


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value if value is not None else 0))
    except (InvalidOperation, ValueError):
        return Decimal("0")


class UsageRecorder:
    """Persist UsageRecord rows from usage reports in a tool output directory."""

    def record(
        self,
        output_dir: Path | str,
        *,
        job_type: str,
        project: Any | None = None,
        run_id: str = "",
        success: bool = True,
        error_message: str = "",
        filename: str = DEFAULT_USAGE_FILE,
        metadata: dict[str, Any] | None = None,
    ) -> UsageRecord | None:
        """Read ``output_dir/filename`` and store it. Returns None when nothing was recorded."""
        path = Path(output_dir) / filename

        if not path.exists():
            logger.warning(
                "Usage report not found for job=%s run_id=%s: %s",
                job_type,
                run_id,
                path,
            )
            return None

        try:
            report = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Failed to parse usage report %s: %s", path, e)
            return None
        except OSError as e:
            logger.error("Failed to read usage report %s: %s", path, e)
            return None

        if not isinstance(report, dict):
            logger.error("Usage report %s is not a JSON object", path)
            return None

        try:
            return self._create(
                report,
                job_type=job_type,
                project=project,
                run_id=run_id,
                success=success,
                error_message=error_message,
                metadata=metadata,
            )
        except Exception:
            logger.error(
                "Failed to record usage for job=%s run_id=%s",
                job_type,
                run_id,
                exc_info=True,
            )
            return None

    def record_all(
        self,
        output_dir: Path | str,
        filenames: list[str] | tuple[str, ...],
        **kwargs: Any,
    ) -> list[UsageRecord]:
        """Record several reports from one run (e.g., one per tool phase)."""
        base_metadata = kwargs.pop("metadata", None) or {}
        records = []
        for filename in filenames:
            phase = Path(filename).stem.removeprefix("usage").lstrip("_") or "main"
            metadata = {**base_metadata, "phase": phase}
            record = self.record(output_dir, filename=filename, metadata=metadata, **kwargs)
            if record is not None:
                records.append(record)
        return records

    def _create(
        self,
        report: dict[str, Any],
        *,
        job_type: str,
        project: Any | None,
        run_id: str,
        success: bool,
        error_message: str,
        metadata: dict[str, Any] | None,
    ) -> UsageRecord:
        usage = report.get("usage") or {}
        if not isinstance(usage, dict):
            usage = {}

        record = UsageRecord.objects.create(
            project=project,
            job_type=job_type,
            run_id=run_id,
            session_id=str(report.get("session_id") or ""),
            input_tokens=_int(usage.get("input_tokens")),
            output_tokens=_int(usage.get("output_tokens")),
            cache_creation_tokens=_int(usage.get("cache_creation_input_tokens")),
            cache_read_tokens=_int(usage.get("cache_read_input_tokens")),
            cost_usd=_decimal(report.get("total_cost_usd")),
            duration_ms=_optional_int(report.get("duration_ms")),
            num_turns=_optional_int(report.get("num_turns")),
            service_tier=str(usage.get("service_tier") or ""),
            metadata=metadata or {},
            success=success,
            error_message=error_message[:5000],
        )
        logger.info(
            "Recorded usage for job=%s run_id=%s: %s tokens, $%s",
            job_type,
            run_id,
            record.total_tokens,
            record.cost_usd,
        )
        return record
