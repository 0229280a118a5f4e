"""Registry of analysis job kinds."""

from apps.orchestration.jobs.base import BaseJob, NotificationSpec
from apps.orchestration.jobs.changes import AnalyzeCommitJob, AnalyzePullRequestJob
from apps.orchestration.jobs.content import (
    CheckArticleUpdatesJob,
    GenerateArticleJob,
    GenerateSectionRecommendationsJob,
    RenderStepImageJob,
)
from apps.orchestration.jobs.project import (
    AnalyzeCodebaseJob,
    GenerateProjectRecommendationsJob,
    SuggestSectionsJob,
)

JOB_REGISTRY: dict[str, type[BaseJob]] = {
    job.name: job
    for job in (
        AnalyzeCodebaseJob,
        SuggestSectionsJob,
        AnalyzePullRequestJob,
        AnalyzeCommitJob,
        GenerateProjectRecommendationsJob,
        GenerateSectionRecommendationsJob,
        GenerateArticleJob,
        CheckArticleUpdatesJob,
        RenderStepImageJob,
    )
}


def get_job(name: str) -> type[BaseJob]:
    """Look up a job kind by name.

    Raises:
        ValueError: Unknown job name.
    """
    if name not in JOB_REGISTRY:
        available = ", ".join(sorted(JOB_REGISTRY.keys()))
        raise ValueError(f"Unknown job '{name}'. Available: {available}")
    return JOB_REGISTRY[name]


__all__ = [
    "JOB_REGISTRY",
    "BaseJob",
    "NotificationSpec",
    "get_job",
]
