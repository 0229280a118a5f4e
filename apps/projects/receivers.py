"""
Signal receivers for the projects app.

Any change to a section or article invalidates the project's rendered
content cache by bumping ``Project.cache_version``.
"""

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from apps.projects.models import Article, Project, Section


@receiver(post_save, sender=Section)
@receiver(post_delete, sender=Section)
@receiver(post_save, sender=Article)
@receiver(post_delete, sender=Article)
def bump_project_cache_version(sender, instance, **kwargs):
    Project(pk=instance.project_id).invalidate_content_cache()
