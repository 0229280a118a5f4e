"""Django app configuration for the projects app."""

from django.apps import AppConfig


class ProjectsConfig(AppConfig):
    """Configuration for the Projects app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.projects"
    verbose_name = "Projects"

    def ready(self):
        from apps.projects import receivers  # noqa: F401
