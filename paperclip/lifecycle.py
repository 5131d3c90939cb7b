"""
Lifecycle coordination between model persistence and attachment processing.

A ``LifecycleCoordinator`` is connected explicitly to each model that holds
attachments. It listens to Django's post_save, pre_delete and post_delete
signals for that model only.

Example:
    coordinator = LifecycleCoordinator()
    coordinator.connect(Profile)
"""

import logging
from typing import Set

from django.db.models.signals import post_delete, post_save, pre_delete

from .exceptions import ConfigurationError
from .fields import attached_files_for

logger = logging.getLogger(__name__)


class LifecycleCoordinator:
    """
    Runs attachment processing in step with model persistence.

    Processing on save happens at most once per change: the instance's dirty
    flag is cleared before any attachment is processed, so the nested save
    an attachment performs to record its metadata is a no-op. Instances
    being processed are also tracked so reentrant saves never recurse.
    """

    def __init__(self):
        self._processing: Set[int] = set()
        self._models = []

    def _dispatch_uid(self, model, hook: str) -> str:
        return f"paperclip.{hook}.{model._meta.label_lower}.{id(self)}"

    def connect(self, model) -> None:
        """
        Subscribe to the save and delete signals of a model.

        Raises:
            ConfigurationError: If the model has no AttachedFiles attribute, lacks
                                a metadata column or has clashing path templates
        """
        name = getattr(model, '_paperclip_attached_files', None)
        if name is None:
            raise ConfigurationError(f"{model.__name__} has no AttachedFiles attribute")
        attached_files = getattr(model, name)
        attached_files.check_columns(model)
        attached_files.check_paths(model)

        post_save.connect(self.handle_post_save, sender=model, dispatch_uid=self._dispatch_uid(model, 'post_save'))
        pre_delete.connect(self.handle_pre_delete, sender=model, dispatch_uid=self._dispatch_uid(model, 'pre_delete'))
        post_delete.connect(self.handle_post_delete, sender=model, dispatch_uid=self._dispatch_uid(model, 'post_delete'))
        if model not in self._models:
            self._models.append(model)
        logger.debug(f"Attachment lifecycle connected for {model._meta.label}")

    def disconnect(self, model) -> None:
        post_save.disconnect(sender=model, dispatch_uid=self._dispatch_uid(model, 'post_save'))
        pre_delete.disconnect(sender=model, dispatch_uid=self._dispatch_uid(model, 'pre_delete'))
        post_delete.disconnect(sender=model, dispatch_uid=self._dispatch_uid(model, 'post_delete'))
        if model in self._models:
            self._models.remove(model)

    @property
    def models(self):
        return list(self._models)

    def handle_post_save(self, sender, instance, **kwargs):
        """Process pending uploads and deletions once per change."""
        attachment_set = attached_files_for(instance)
        if attachment_set is None or not attachment_set.needs_processing:
            return
        if id(instance) in self._processing:
            return

        attachment_set.needs_processing = False
        self._processing.add(id(instance))
        try:
            for attachment in attachment_set:
                attachment.after_save(instance)
        except Exception:
            # Leave the instance dirty so the next save retries
            attachment_set.mark_updated()
            raise
        finally:
            self._processing.discard(id(instance))

        attachment_set.finish_cycle()

    def handle_pre_delete(self, sender, instance, **kwargs):
        attachment_set = attached_files_for(instance)
        if attachment_set is None:
            return
        for attachment in attachment_set:
            attachment.before_delete(instance)

    def handle_post_delete(self, sender, instance, **kwargs):
        """Remove stored files of a deleted instance, best-effort."""
        attachment_set = attached_files_for(instance)
        if attachment_set is None:
            return
        for attachment in attachment_set:
            attachment.after_delete(instance)
            for error in attachment.delete_errors:
                logger.warning(
                    f"{sender.__name__} (pk={instance.pk}) deleted but {error.path} "
                    f"of attachment '{attachment.name}' remains in storage"
                )
