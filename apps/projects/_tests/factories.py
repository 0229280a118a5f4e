"""Small helpers for building project records in tests."""

from apps.projects.models import (
    Article,
    ChangelogEntry,
    Project,
    ProjectRepository,
    Recommendation,
    Section,
    SourceType,
    StepImage,
)


def make_project(name="Acme Docs", repo="acme/api", **kwargs):
    kwargs.setdefault("owner_email", "owner@example.com")
    kwargs.setdefault("webhook_secret", "project-secret")
    project = Project.objects.create(name=name, **kwargs)
    if repo:
        ProjectRepository.objects.create(project=project, full_name=repo, is_primary=True)
    return project


def make_pr_entry(project, number=7, **kwargs):
    kwargs.setdefault("trigger_title", "Add dark mode")
    kwargs.setdefault("trigger_body", "Adds a dark theme toggle to settings.")
    kwargs.setdefault("source_repo", "acme/api")
    return ChangelogEntry.objects.create(
        project=project,
        source_type=SourceType.PULL_REQUEST,
        pull_request_number=number,
        **kwargs,
    )


def make_commit_entry(project, sha="0123456789abcdef0123456789abcdef01234567", **kwargs):
    kwargs.setdefault("trigger_title", "Fix login redirect")
    return ChangelogEntry.objects.create(
        project=project, source_type=SourceType.COMMIT, commit_sha=sha, **kwargs
    )


def make_section(project, name="Getting Started", **kwargs):
    return Section.objects.create(project=project, name=name, **kwargs)


def make_recommendation(project, title="Configure webhooks", **kwargs):
    return Recommendation.objects.create(project=project, title=title, **kwargs)


def make_article(project, title="Configure webhooks", **kwargs):
    return Article.objects.create(project=project, title=title, **kwargs)


def make_step_image(article, step_index=0, **kwargs):
    kwargs.setdefault("mockup_html", "<div>Step</div>")
    return StepImage.objects.create(article=article, step_index=step_index, **kwargs)
