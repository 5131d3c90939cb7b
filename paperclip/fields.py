"""
Model integration.

Models keep their attachments through composition: an ``AttachedFiles``
class attribute gives every instance its own ``AttachmentSet``, and each
attachment stores its metadata in an ``AttachmentField`` column.

Example:
    registry = AttachmentRegistry()
    registry.register_attachment('avatar', variants={'thumb': '100x100#'})

    class Profile(models.Model):
        avatar_file = AttachmentField()
        attachments = AttachedFiles(registry)

    profile.attachments.set_attachment('avatar', request.FILES['avatar'])
    profile.save()
    profile.attachments.get_attachment('avatar').url('thumb')
"""

from collections import OrderedDict
from typing import Dict, Iterator, List, Optional

from django.db import models

from .attachment import Attachment
from .conf import get_setting
from .exceptions import ConfigurationError, UnknownAttachmentError
from .files import StorableFileFactory
from .registry import AttachmentRegistry

# Instance __dict__ key holding the per-instance AttachmentSet
INSTANCE_CACHE_KEY = '_paperclip_attachments'


class AttachmentField(models.JSONField):
    """JSON column holding one attachment's file and variant metadata."""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('default', dict)
        kwargs.setdefault('blank', True)
        kwargs.setdefault('editable', False)
        super().__init__(*args, **kwargs)


class AttachmentSet:
    """
    The attachments of one model instance, in declaration order.

    Tracks whether any attachment changed since the last processed save.
    """

    def __init__(self, instance, registry: AttachmentRegistry, factory: Optional[StorableFileFactory] = None):
        self.instance = instance
        self.registry = registry
        self.factory = factory
        self.needs_processing = False
        self._attachments: Dict[str, Attachment] = OrderedDict(
            (descriptor.name, Attachment(instance, descriptor, owner=self))
            for descriptor in registry
        )

    def __repr__(self):
        return f"<AttachmentSet {list(self._attachments)!r} on {self.instance.__class__.__name__}>"

    def __iter__(self) -> Iterator[Attachment]:
        return iter(list(self._attachments.values()))

    def __len__(self) -> int:
        return len(self._attachments)

    def __contains__(self, name) -> bool:
        return name in self._attachments

    def __getitem__(self, name: str) -> Attachment:
        return self.get_attachment(name)

    def names(self) -> List[str]:
        return list(self._attachments)

    def get_attachment(self, name: str) -> Attachment:
        """
        Get an attachment by name.

        Raises:
            UnknownAttachmentError: If the model declares no such attachment
        """
        try:
            return self._attachments[name]
        except KeyError:
            raise UnknownAttachmentError(f"No attachment for '{name}'") from None

    def set_attachment(self, name: str, value) -> None:
        """
        Assign a new value to an attachment.

        The null marker (PAPERCLIP['NULL_ATTACHMENT']) clears the attachment,
        falsy values are ignored, anything else is normalized into an
        uploaded file.

        Raises:
            UnknownAttachmentError: If the model declares no such attachment
            InvalidUploadError: If the value cannot be read; nothing changes
        """
        attachment = self.get_attachment(name)
        if not value:
            return

        if isinstance(value, str) and value == get_setting('NULL_ATTACHMENT'):
            attachment.set_to_be_deleted()
            return

        factory = self.factory or StorableFileFactory()
        attachment.set_uploaded_file(factory.make_from_any(value))

    def paths_for(self, name: str) -> Dict[str, str]:
        """Map of generated variant name to storage path."""
        attachment = self.get_attachment(name)
        return {variant: attachment.variant_path(variant) for variant in attachment.variants(True)}

    def urls_for(self, name: str) -> Dict[str, str]:
        """Map of generated variant name to URL."""
        attachment = self.get_attachment(name)
        return {variant: attachment.url(variant) for variant in attachment.variants(True)}

    def mark_updated(self) -> None:
        self.needs_processing = True

    def finish_cycle(self) -> None:
        for attachment in self:
            attachment.finish_cycle()


class AttachedFiles:
    """
    Model class attribute exposing the per-instance AttachmentSet.

    The first instance access freezes the registry: attachments must be
    declared before any instance uses them.
    """

    def __init__(self, registry: AttachmentRegistry):
        self.registry = registry
        self.name = None
        self.model = None

    def contribute_to_class(self, cls, name):
        if cls.__dict__.get('_paperclip_attached_files') not in (None, name):
            raise ConfigurationError(f"{cls.__name__} declares more than one AttachedFiles attribute")

        self.name = name
        self.model = cls
        cls._paperclip_attached_files = name
        setattr(cls, name, self)

    def check_columns(self, cls) -> None:
        """
        Check that every attachment has its metadata column on the model.

        Raises:
            ConfigurationError: If a column is missing
        """
        field_names = {field.name for field in cls._meta.get_fields()}
        for descriptor in self.registry:
            if descriptor.column not in field_names:
                raise ConfigurationError(
                    f"{cls.__name__} has no field '{descriptor.column}' for attachment '{descriptor.name}'"
                )

    def check_paths(self, cls) -> None:
        """
        Check that no two attachments of the model write to the same paths.

        Raises:
            ConfigurationError: If attachments share a path template without :attachment
        """
        seen = {}
        for descriptor in self.registry:
            template = descriptor.options.path_template
            if ':attachment' in template:
                continue
            if template in seen:
                raise ConfigurationError(
                    f"{cls.__name__} attachments '{seen[template]}' and '{descriptor.name}' share "
                    f"the path template '{template}'; add :attachment to it"
                )
            seen[template] = descriptor.name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self

        attachment_set = instance.__dict__.get(INSTANCE_CACHE_KEY)
        if attachment_set is None:
            self.registry.freeze()
            attachment_set = AttachmentSet(instance, self.registry)
            instance.__dict__[INSTANCE_CACHE_KEY] = attachment_set
        return attachment_set

    def __set__(self, instance, value):
        raise AttributeError(
            f"Use {instance.__class__.__name__}.{self.name}.set_attachment() to assign attachments"
        )


def attached_files_for(instance) -> Optional[AttachmentSet]:
    """Return the instance's AttachmentSet, or None if its model has no attachments."""
    name = getattr(instance.__class__, '_paperclip_attached_files', None)
    if name is None:
        return None
    return getattr(instance, name)
