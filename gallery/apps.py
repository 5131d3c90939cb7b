from django.apps import AppConfig

from paperclip.lifecycle import LifecycleCoordinator


# Processes attachments of the gallery models on save and delete
attachment_lifecycle = LifecycleCoordinator()


class GalleryConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'gallery'

    def ready(self):
        """Connect attachment processing to the gallery models."""
        from .models import Document, Profile

        attachment_lifecycle.connect(Profile)
        attachment_lifecycle.connect(Document)
