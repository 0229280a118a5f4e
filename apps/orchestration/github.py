"""Minimal GitHub REST client used by the weekly pull request sweep."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime
from typing import Any

from django.conf import settings
from django.utils.dateparse import parse_datetime

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """GitHub could not be reached or answered with an error."""


class GitHubClient:
    def __init__(
        self,
        token: str | None = None,
        api_url: str | None = None,
        timeout: int = 30,
    ):
        self.token = token if token is not None else getattr(settings, "GITHUB_API_TOKEN", "")
        self.api_url = (
            api_url or getattr(settings, "GITHUB_API_URL", "") or "https://api.github.com"
        ).rstrip("/")
        self.timeout = timeout

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.api_url}{path}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "SupportPages/1.0",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        request = urllib.request.Request(url, headers=headers, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raise GitHubAPIError(f"GitHub API returned {e.code} for {path}") from e
        except urllib.error.URLError as e:
            raise GitHubAPIError(f"GitHub API unreachable for {path}: {e.reason}") from e
        except ValueError as e:
            raise GitHubAPIError(f"GitHub API sent an invalid body for {path}: {e}") from e

    def merged_pull_requests(self, repo: str, since: datetime) -> list[dict[str, Any]]:
        """Pull requests of ``repo`` merged after ``since``, most recently updated first."""
        pulls = self._get(
            f"/repos/{repo}/pulls",
            {"state": "closed", "sort": "updated", "direction": "desc", "per_page": 100},
        )
        if not isinstance(pulls, list):
            raise GitHubAPIError(f"Unexpected pull request listing for {repo}")

        merged = []
        for pull in pulls:
            if not isinstance(pull, dict) or not isinstance(pull.get("number"), int):
                continue
            merged_at = parse_datetime(pull.get("merged_at") or "")
            if merged_at is not None and merged_at > since:
                merged.append(pull)
        logger.debug("%s merged pull request(s) in %s since %s", len(merged), repo, since)
        return merged
