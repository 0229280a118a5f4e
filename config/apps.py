"""Custom Django admin app configuration."""

from django.contrib.admin.apps import AdminConfig


class SupportPagesAdminConfig(AdminConfig):
    default_site = "config.admin.SupportPagesAdminSite"
