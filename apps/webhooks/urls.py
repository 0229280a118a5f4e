"""
URL configuration for the webhooks app.
"""

from django.urls import path

from apps.webhooks.views import RepositoryWebhookView

app_name = "webhooks"

urlpatterns = [
    path("<str:driver>/", RepositoryWebhookView.as_view(), name="receive"),
    path(
        "<str:driver>/<slug:project_slug>/",
        RepositoryWebhookView.as_view(),
        name="receive_project",
    ),
]
