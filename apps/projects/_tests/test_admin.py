"""Tests for the admin site, dashboard and object actions."""

import pytest
from django.contrib import admin
from django.urls import reverse

from apps.notify.models import PendingNotification
from apps.orchestration.state_machine import JobStatus
from apps.projects._tests.factories import make_article, make_project, make_recommendation
from apps.projects.models import Article, ReviewDecision
from config.admin import SupportPagesAdminSite, prettify_json


def action_url(model, pk, tool):
    return reverse(f"admin:projects_{model}_actions", args=[pk, tool])


@pytest.mark.django_db
class TestSupportPagesAdminSite:
    def test_custom_admin_site_is_active(self):
        assert isinstance(admin.site, SupportPagesAdminSite)

    def test_admin_site_header(self):
        assert admin.site.site_header == "Support Pages"
        assert admin.site.index_title == "Pipeline dashboard"

    def test_dashboard_loads(self, admin_client):
        response = admin_client.get("/admin/")
        assert response.status_code == 200
        assert len(response.context["job_health"]) == 9

    def test_dashboard_counts_runs_and_notifications(self):
        project = make_project(analysis_status=JobStatus.FAILED)
        PendingNotification.objects.create(
            project=project, event_type="analysis_complete", status="error"
        )

        context = admin.site._get_dashboard_context()

        health = {row["job"]: row for row in context["job_health"]}
        assert health["analyze_codebase"]["failed"] == 1
        assert health["analyze_codebase"]["running"] == 0
        assert context["usage_by_job"] == []
        assert context["undigested_notifications"] == 1


def test_prettify_json():
    assert prettify_json({}) == "-"
    html = prettify_json({"a": 1})
    assert html.startswith("<pre")
    assert "&quot;a&quot;: 1" in html


@pytest.mark.django_db
class TestProjectActions:
    def test_analyze_codebase_dispatches_once(self, admin_client, isolated_pipeline):
        project = make_project()
        url = action_url("project", project.pk, "analyze_codebase")

        assert admin_client.post(url).status_code == 302
        admin_client.post(url)

        project.refresh_from_db()
        assert project.analysis_status == JobStatus.PENDING
        assert isolated_pipeline["run_analysis_job"].delay.call_count == 1

    def test_check_article_updates_without_target(self, admin_client, isolated_pipeline):
        project = make_project()

        response = admin_client.post(action_url("project", project.pk, "check_article_updates"))

        assert response.status_code == 302
        assert not project.update_checks.exists()
        isolated_pipeline["run_analysis_job"].delay.assert_not_called()


@pytest.mark.django_db
class TestRecommendationActions:
    def test_accept_creates_article(self, admin_client):
        project = make_project()
        recommendation = make_recommendation(project, title="Reset a password")

        admin_client.post(action_url("recommendation", recommendation.pk, "accept"))

        recommendation.refresh_from_db()
        assert recommendation.status == ReviewDecision.ACCEPTED
        assert Article.objects.filter(project=project, title="Reset a password").exists()

    def test_reject(self, admin_client):
        recommendation = make_recommendation(make_project())

        admin_client.post(action_url("recommendation", recommendation.pk, "reject"))

        recommendation.refresh_from_db()
        assert recommendation.status == ReviewDecision.REJECTED


@pytest.mark.django_db
class TestArticleActions:
    def test_regenerate_completed_article(self, admin_client, isolated_pipeline):
        article = make_article(make_project(), generation_status=JobStatus.COMPLETED)

        response = admin_client.post(action_url("article", article.pk, "regenerate"))

        assert response.status_code == 302
        article.refresh_from_db()
        assert article.generation_status == JobStatus.PENDING
        assert isolated_pipeline["run_analysis_job"].delay.call_count == 1
