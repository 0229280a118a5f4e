"""Admin configuration for project models.

Object actions start analysis runs through the same idempotent dispatch the
webhooks use, so a double click never starts a second run.
"""

from django.contrib import admin
from django.db import models as db_models
from django_json_widget.widgets import JSONEditorWidget
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.orchestration.dispatch import redispatch, request_article_update_check
from apps.projects.models import (
    Article,
    ArticleUpdateCheck,
    ArticleUpdateSuggestion,
    ChangelogEntry,
    Project,
    ProjectRepository,
    Recommendation,
    ReviewDecision,
    Section,
    StepImage,
    SuggestionStatus,
)
from config.admin import prettify_json


class DispatchActionsMixin:
    """Shared message handling for actions that start a job.

    Admin actions are explicit requests, so a finished run is reset and
    started again; an in-flight run is never touched.
    """

    def _dispatch(self, request, job_name, obj, label):
        if redispatch(job_name, obj):
            self.message_user(request, f"{label} queued for '{obj}'.")
        else:
            self.message_user(
                request,
                f"{label} not started for '{obj}': a run is in progress or cannot be restarted.",
                level="warning",
            )


class ProjectRepositoryInline(admin.TabularInline):
    model = ProjectRepository
    extra = 0
    fields = ["full_name", "is_primary", "installation_id", "created_at"]
    readonly_fields = ["created_at"]


@admin.register(Project)
class ProjectAdmin(DispatchActionsMixin, DjangoObjectActions, admin.ModelAdmin):
    list_display = [
        "name",
        "slug",
        "update_strategy",
        "analysis_status",
        "sections_generation_status",
        "recommendations_status",
        "analyzed_at",
    ]
    list_filter = ["update_strategy", "analysis_status", "email_notifications_enabled"]
    search_fields = ["name", "slug", "repositories__full_name"]
    prepopulated_fields = {"slug": ["name"]}
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    inlines = [ProjectRepositoryInline]
    readonly_fields = [
        "analysis_status",
        "analysis_started_at",
        "analyzed_at",
        "analysis_commit_sha",
        "analysis_error",
        "pretty_analysis_metadata",
        "sections_generation_status",
        "sections_generation_started_at",
        "recommendations_status",
        "recommendations_started_at",
        "cache_version",
        "created_at",
        "updated_at",
    ]
    change_actions = [
        "analyze_codebase",
        "suggest_sections",
        "generate_recommendations",
        "check_article_updates",
        "send_digest_now",
        "send_sample_digest",
    ]

    fieldsets = [
        ("General", {"fields": ["name", "slug", "project_overview", "update_strategy"]}),
        ("Webhooks", {"fields": ["webhook_secret"], "classes": ["collapse"]}),
        (
            "Notifications",
            {"fields": ["owner_email", "email_notifications_enabled", "disabled_email_events"]},
        ),
        (
            "Codebase analysis",
            {
                "fields": [
                    "analysis_status",
                    "analysis_started_at",
                    "analyzed_at",
                    "analysis_commit_sha",
                    "analysis_error",
                    "analysis_summary",
                    "pretty_analysis_metadata",
                ]
            },
        ),
        (
            "Generation runs",
            {
                "fields": [
                    "sections_generation_status",
                    "sections_generation_started_at",
                    "recommendations_status",
                    "recommendations_started_at",
                ]
            },
        ),
        ("Timestamps", {"fields": ["cache_version", "created_at", "updated_at"]}),
    ]

    @admin.display(description="Analysis metadata")
    def pretty_analysis_metadata(self, obj):
        return prettify_json(obj.analysis_metadata)

    @object_action(label="Analyze codebase", description="Summarize the linked repositories")
    def analyze_codebase(self, request, obj):
        self._dispatch(request, "analyze_codebase", obj, "Codebase analysis")

    @object_action(label="Suggest sections", description="Propose help-centre sections")
    def suggest_sections(self, request, obj):
        self._dispatch(request, "suggest_sections", obj, "Section suggestion")

    @object_action(
        label="Generate recommendations", description="Recommend articles for the project"
    )
    def generate_recommendations(self, request, obj):
        self._dispatch(request, "generate_project_recommendations", obj, "Recommendation run")

    @object_action(
        label="Check article updates",
        description="Compare articles with code changes since they were written",
    )
    def check_article_updates(self, request, obj):
        check, dispatched = request_article_update_check(obj)
        if dispatched:
            self.message_user(
                request, f"Article update check queued ({check.target_commit_sha[:7]})."
            )
        elif check is not None:
            self.message_user(
                request, "An article update check is already in progress.", level="warning"
            )
        else:
            self.message_user(request, "Nothing to check: articles are current.", level="warning")

    @object_action(label="Send digest now", description="Deliver pending notifications now")
    def send_digest_now(self, request, obj):
        from apps.notify.services import DigestService

        result = DigestService().send_for_project(obj, force=True)
        level = "error" if result.errors else "info"
        self.message_user(
            request,
            f"Digest {result.status}: {result.consumed} event(s), {result.sent} message(s) sent.",
            level=level,
        )

    @object_action(
        label="Send sample digest", description="Deliver a digest with placeholder content"
    )
    def send_sample_digest(self, request, obj):
        from apps.notify.services import DigestService

        result = DigestService().send_sample(obj)
        if result.errors:
            self.message_user(request, f"Sample digest failed: {result.errors[0]}", level="error")
        else:
            recipient = obj.owner_email or "default recipient"
            self.message_user(request, f"Sample digest sent to {recipient}.")


@admin.register(ChangelogEntry)
class ChangelogEntryAdmin(DispatchActionsMixin, DjangoObjectActions, admin.ModelAdmin):
    list_display = ["__str__", "project", "source_type", "analysis_status", "status", "created_at"]
    list_filter = ["source_type", "analysis_status", "status"]
    search_fields = ["title", "trigger_title", "commit_sha", "source_repo"]
    readonly_fields = [
        "analysis_status",
        "analysis_started_at",
        "analysis_error",
        "created_at",
        "updated_at",
    ]
    change_actions = ["retry_analysis"]

    @object_action(label="Retry analysis", description="Re-run analysis after a failure")
    def retry_analysis(self, request, obj):
        job_name = "analyze_pull_request" if obj.source_type == "pull_request" else "analyze_commit"
        self._dispatch(request, job_name, obj, "Analysis")


@admin.register(Section)
class SectionAdmin(DispatchActionsMixin, DjangoObjectActions, admin.ModelAdmin):
    list_display = [
        "name",
        "project",
        "section_type",
        "status",
        "position",
        "recommendations_status",
    ]
    list_filter = ["section_type", "status", "recommendations_status"]
    search_fields = ["name", "project__name"]
    readonly_fields = ["recommendations_status", "recommendations_started_at"]
    change_actions = ["generate_recommendations"]

    @object_action(
        label="Generate recommendations", description="Recommend articles for this section"
    )
    def generate_recommendations(self, request, obj):
        self._dispatch(request, "generate_section_recommendations", obj, "Recommendation run")


@admin.register(Recommendation)
class RecommendationAdmin(DjangoObjectActions, admin.ModelAdmin):
    list_display = ["title", "project", "section", "source_update", "status", "created_at"]
    list_filter = ["status"]
    search_fields = ["title", "description", "run_id"]
    readonly_fields = ["run_id", "rejected_at", "created_at"]
    change_actions = ["accept", "reject"]

    @object_action(label="Accept", description="Create the article and start generating it")
    def accept(self, request, obj):
        if obj.status != ReviewDecision.PENDING:
            self.message_user(request, f"Recommendation is already {obj.status}.", level="warning")
            return
        article = obj.accept()
        self.message_user(request, f"Article '{article.title}' created; generation queued.")

    @object_action(label="Reject", description="Reject this recommendation")
    def reject(self, request, obj):
        obj.reject()
        self.message_user(request, f"Recommendation '{obj.title}' rejected.")


class StepImageInline(admin.TabularInline):
    model = StepImage
    extra = 0
    fields = ["step_index", "render_status", "render_attempts", "image", "render_error"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Article)
class ArticleAdmin(DispatchActionsMixin, DjangoObjectActions, admin.ModelAdmin):
    list_display = ["title", "project", "section", "generation_status", "review_status", "status"]
    list_filter = ["generation_status", "review_status", "status"]
    search_fields = ["title", "content"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    readonly_fields = [
        "generation_status",
        "generation_started_at",
        "generation_error",
        "source_commit_sha",
        "published_at",
        "created_at",
        "updated_at",
    ]
    inlines = [StepImageInline]
    change_actions = ["regenerate", "publish"]

    @object_action(label="Regenerate", description="Generate the article content again")
    def regenerate(self, request, obj):
        self._dispatch(request, "generate_article", obj, "Article generation")

    @object_action(label="Publish", description="Publish this article")
    def publish(self, request, obj):
        obj.publish()
        self.message_user(request, f"Article '{obj.title}' published.")


class ArticleUpdateSuggestionInline(admin.TabularInline):
    model = ArticleUpdateSuggestion
    extra = 0
    fields = ["suggestion_type", "article", "priority", "reason", "status"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ArticleUpdateCheck)
class ArticleUpdateCheckAdmin(admin.ModelAdmin):
    list_display = ["__str__", "project", "status", "summary", "created_at", "completed_at"]
    list_filter = ["status"]
    readonly_fields = [
        "status",
        "started_at",
        "completed_at",
        "pretty_results",
        "error_message",
        "created_at",
    ]
    inlines = [ArticleUpdateSuggestionInline]

    @admin.display(description="Results")
    def pretty_results(self, obj):
        return prettify_json(obj.results)


@admin.register(ArticleUpdateSuggestion)
class ArticleUpdateSuggestionAdmin(DjangoObjectActions, admin.ModelAdmin):
    list_display = ["__str__", "check_run", "priority", "status", "created_at"]
    list_filter = ["suggestion_type", "priority", "status"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    change_actions = ["accept", "dismiss"]

    @object_action(label="Accept", description="Accept and store regeneration guidance")
    def accept(self, request, obj):
        if obj.status != SuggestionStatus.PENDING:
            self.message_user(request, f"Suggestion is already {obj.status}.", level="warning")
            return
        obj.accept()
        self.message_user(request, "Suggestion accepted.")

    @object_action(label="Dismiss", description="Dismiss this suggestion")
    def dismiss(self, request, obj):
        obj.dismiss()
        self.message_user(request, "Suggestion dismissed.")


@admin.register(StepImage)
class StepImageAdmin(DispatchActionsMixin, DjangoObjectActions, admin.ModelAdmin):
    list_display = ["__str__", "render_status", "render_attempts", "quality_score", "updated_at"]
    list_filter = ["render_status"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    readonly_fields = ["render_status", "render_started_at", "render_attempts", "render_error"]
    change_actions = ["render"]

    @object_action(label="Render", description="Render the step mockup")
    def render(self, request, obj):
        self._dispatch(request, "render_step_image", obj, "Render")
