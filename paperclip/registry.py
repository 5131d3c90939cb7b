"""
Attachment Registry

Per-entity-type registry mapping attachment names to their descriptors.
Registration happens while the model module is imported; the registry is
frozen once the first entity instance materializes its attachments.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .config.options import AttachmentOptions, build_options
from .exceptions import ConfigurationError, DuplicateAttachmentError, UnknownAttachmentError


@dataclass(frozen=True)
class AttachmentDescriptor:
    """Immutable configuration for one attachment name."""

    name: str
    options: AttachmentOptions

    @property
    def column(self) -> str:
        """Name of the JSON field holding this attachment's metadata."""
        return self.options.column or f"{self.name}_file"


class AttachmentRegistry:
    """Registry of attachment descriptors for one entity type"""

    def __init__(self):
        self._descriptors: Dict[str, AttachmentDescriptor] = {}
        self._frozen = False

    def register(self, name: str, descriptor: AttachmentDescriptor) -> AttachmentDescriptor:
        """
        Register an attachment descriptor.

        Args:
            name: Attachment name, unique for the entity type
            descriptor: Descriptor to register under that name

        Returns:
            The registered descriptor

        Raises:
            DuplicateAttachmentError: If the name is already registered
            ConfigurationError: If the registry is frozen or the names disagree
        """
        if self._frozen:
            raise ConfigurationError(
                f"Cannot register attachment '{name}': entity instances already exist"
            )
        if name in self._descriptors:
            raise DuplicateAttachmentError(f"Attachment '{name}' is already registered")
        if descriptor.name != name:
            raise ConfigurationError(
                f"Descriptor name '{descriptor.name}' does not match registration name '{name}'"
            )
        self._descriptors[name] = descriptor
        return descriptor

    def register_attachment(self, name: str, options: Any = None, **kwargs) -> AttachmentDescriptor:
        """
        Declare an attachment from options.

        Example:
            >>> registry.register_attachment('avatar', variants={'thumb': '100x100#'})
        """
        descriptor = AttachmentDescriptor(name=name, options=build_options(options, **kwargs))
        return self.register(name, descriptor)

    def get(self, name: str) -> AttachmentDescriptor:
        """
        Get a descriptor by attachment name.

        Raises:
            UnknownAttachmentError: If the name is not registered
        """
        try:
            return self._descriptors[name]
        except KeyError:
            raise UnknownAttachmentError(f"No attachment registered for '{name}'") from None

    def find(self, name: str) -> Optional[AttachmentDescriptor]:
        return self._descriptors.get(name)

    def names(self) -> List[str]:
        """List registered attachment names in declaration order"""
        return list(self._descriptors.keys())

    def freeze(self) -> None:
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def __iter__(self) -> Iterator[AttachmentDescriptor]:
        return iter(list(self._descriptors.values()))

    def __contains__(self, name) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
