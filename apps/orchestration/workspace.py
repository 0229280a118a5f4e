"""Per-run working directories for the external analysis tool."""

from __future__ import annotations

import logging
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


def analysis_base_dir() -> Path:
    return Path(getattr(settings, "ANALYSIS_OUTPUT_DIR", "tmp/analysis"))


@contextmanager
def analysis_workdir(prefix: str) -> Iterator[Path]:
    """Create a unique directory for one tool run and remove it afterwards.

    Set KEEP_ANALYSIS_OUTPUT to keep the directory for debugging.
    """
    stamp = int(timezone.now().timestamp())
    workdir = analysis_base_dir() / f"{prefix}_{stamp}_{uuid.uuid4().hex[:8]}"
    workdir.mkdir(parents=True, exist_ok=True)
    try:
        yield workdir
    finally:
        if getattr(settings, "KEEP_ANALYSIS_OUTPUT", False):
            logger.info("Keeping analysis directory: %s", workdir)
        else:
            shutil.rmtree(workdir, ignore_errors=True)
