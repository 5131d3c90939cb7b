"""
Attachment

Runtime binding between one model instance and one declared attachment.
Tracks the pending action (new upload or deletion) and reads the variant
paths recorded in the instance's metadata column.

State machine for one save cycle:

    CLEAN -> PENDING_UPLOAD -> PROCESSED -> CLEAN
    CLEAN -> PENDING_DELETION -> DELETED

``after_save`` is the only place variant metadata is written.
"""

import enum
import logging
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .config.variant import ORIGINAL_VARIANT, VariantSpec
from .exceptions import ConfigurationError, ProcessingError, StorageDeleteError, UnknownVariantError
from .files import StorableFile
from .paths import interpolate, variant_filename
from .processing import VariantProcessor
from .registry import AttachmentDescriptor
from .storage import StorageAdapter, get_adapter

logger = logging.getLogger(__name__)


class AttachmentState(enum.Enum):
    CLEAN = 'clean'
    PENDING_UPLOAD = 'pending_upload'
    PROCESSED = 'processed'
    PENDING_DELETION = 'pending_deletion'
    DELETED = 'deleted'


class VariantNames:
    """Lazy, restartable view over an attachment's variant names."""

    def __init__(self, attachment: 'Attachment', only_existing: bool):
        self._attachment = attachment
        self._only_existing = only_existing

    def __iter__(self) -> Iterator[str]:
        recorded = self._attachment._recorded_variants() if self._only_existing else None
        for name in self._attachment.descriptor.options.variant_names:
            if recorded is None or recorded.get(name, {}).get('path'):
                yield name

    def __repr__(self):
        return f"<VariantNames {list(self)!r}>"


class Attachment:
    """
    One attachment slot on one model instance.

    The descriptor is shared with every other instance of the model; the
    pending file and deletion flag belong to this instance only. Variant
    paths are read from the instance's metadata column on every access.
    """

    def __init__(self, instance, descriptor: AttachmentDescriptor, owner=None, processor=None):
        """
        Args:
            instance: Model instance owning the attachment
            descriptor: Shared attachment configuration
            owner: AttachmentSet to mark dirty on mutation
            processor: Variant renderer (defaults to VariantProcessor)
        """
        self.instance = instance
        self.descriptor = descriptor
        self.owner = owner
        self.processor = processor or VariantProcessor()
        self.state = AttachmentState.CLEAN
        self.delete_errors: List[StorageDeleteError] = []
        self._pending_file: Optional[StorableFile] = None
        self._delete_queue: List[str] = []

    def __repr__(self):
        return f"<Attachment {self.name} on {self.instance.__class__.__name__} ({self.state.value})>"

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def options(self):
        return self.descriptor.options

    @property
    def storage(self) -> StorageAdapter:
        return get_adapter(self.options.storage_disk)

    @property
    def pending_file(self) -> Optional[StorableFile]:
        return self._pending_file

    @property
    def is_pending_deletion(self) -> bool:
        return self.state is AttachmentState.PENDING_DELETION

    # Mutations

    def set_uploaded_file(self, file: StorableFile) -> None:
        """Record a new upload to process on the next save. Clears a pending deletion."""
        self._pending_file = file
        self.state = AttachmentState.PENDING_UPLOAD
        logger.debug(f"Attachment '{self.name}' has pending upload {file.name}")
        self._mark_updated()

    def set_to_be_deleted(self) -> None:
        """Clear the attachment on the next save. Discards a pending upload."""
        self._pending_file = None
        self.state = AttachmentState.PENDING_DELETION
        logger.debug(f"Attachment '{self.name}' marked for deletion")
        self._mark_updated()

    def _mark_updated(self) -> None:
        if self.owner is not None:
            self.owner.mark_updated()

    # Metadata lookups

    def _metadata(self) -> dict:
        return getattr(self.instance, self.descriptor.column, None) or {}

    def _recorded_variants(self) -> Dict[str, dict]:
        return self._metadata().get('variants') or {}

    def _resolve_variant(self, variant: Optional[str]) -> str:
        variant = variant or self.options.default
        if variant not in self.options.variant_names:
            raise UnknownVariantError(f"Attachment '{self.name}' has no variant '{variant}'")
        return variant

    def variants(self, only_existing: bool = False) -> Iterable[str]:
        """
        Variant names, 'original' first, then in declaration order.

        Args:
            only_existing: Only include variants with a recorded path
        """
        return VariantNames(self, only_existing)

    def variant_path(self, variant: Optional[str] = None) -> Optional[str]:
        """
        Storage path of a variant, or None if it has not been generated.

        Raises:
            UnknownVariantError: If the variant is not declared
        """
        variant = self._resolve_variant(variant)
        return self._recorded_variants().get(variant, {}).get('path') or None

    def url(self, variant: Optional[str] = None) -> Optional[str]:
        """
        Public URL of a variant, falling back to the default URL template.

        Raises:
            UnknownVariantError: If the variant is not declared
            ConfigurationError: If the default URL uses an unknown placeholder
        """
        variant = self._resolve_variant(variant)
        path = self.variant_path(variant)
        if path:
            return self.storage.url(path)

        template = self.options.default_url
        if not template:
            return None
        try:
            return interpolate(template, self.instance, self.name, variant, '')
        except ValueError as e:
            raise ConfigurationError(f"Invalid default URL for attachment '{self.name}': {e}") from e

    @property
    def exists(self) -> bool:
        return bool(self.variant_path(ORIGINAL_VARIANT))

    @property
    def original_filename(self) -> Optional[str]:
        return self._metadata().get('file_name')

    @property
    def size(self) -> Optional[int]:
        return self._metadata().get('file_size')

    @property
    def content_type(self) -> Optional[str]:
        return self._metadata().get('content_type')

    @property
    def updated_at(self) -> Optional[datetime]:
        value = self._metadata().get('updated_at')
        return parse_datetime(value) if value else None

    # Lifecycle

    def after_save(self, instance) -> None:
        """
        Process the pending action after the owning instance was saved.

        Raises:
            ProcessingError: If a variant could not be rendered or written;
                             no metadata is recorded in that case
        """
        self.instance = instance
        if self.state is AttachmentState.PENDING_UPLOAD:
            self._process_upload(instance)
        elif self.state is AttachmentState.PENDING_DELETION:
            self._process_deletion(instance)

    def before_delete(self, instance) -> None:
        """Queue every stored file of the attachment for removal."""
        self.instance = instance
        self._delete_queue = []
        if self.options.should_preserve_files:
            return
        self._delete_queue = self._recorded_paths()

    def after_delete(self, instance) -> None:
        """Remove queued files. Failures are logged and collected, never raised."""
        queued, self._delete_queue = self._delete_queue, []
        self.delete_errors = self._delete_paths(queued)
        self._pending_file = None
        self.state = AttachmentState.DELETED

    def finish_cycle(self) -> None:
        if self.state is AttachmentState.PROCESSED:
            self.state = AttachmentState.CLEAN

    def reprocess(self, instance, variants: Optional[Iterable[str]] = None) -> List[str]:
        """
        Re-render variants from the stored original.

        Args:
            instance: Owning model instance
            variants: Variant names to render (defaults to all declared variants)

        Returns:
            Names of the variants that were rendered

        Raises:
            ProcessingError: If there is no stored original or rendering fails
            UnknownVariantError: If a requested variant is not declared
        """
        self.instance = instance
        original = self.variant_path(ORIGINAL_VARIANT)
        if not original:
            raise ProcessingError(f"Attachment '{self.name}' has no stored original to reprocess")

        names = [self._resolve_variant(name) for name in variants] if variants else [
            spec.name for spec in self.options.variants
        ]
        specs = [self.options.variant(name) for name in names if name != ORIGINAL_VARIANT]

        metadata = self._metadata()
        try:
            data = self.storage.read(original)
        except Exception as e:
            raise ProcessingError(f"Cannot read stored original {original}: {e}") from e

        source = StorableFile(
            name=metadata.get('file_name') or original.rsplit('/', 1)[-1],
            data=data,
            content_type=metadata.get('content_type') or 'application/octet-stream',
        )

        recorded = dict(self._recorded_variants())
        rendered = self._render_variants(instance, source, specs)
        targets = {name: entry.get('path') for name, entry in recorded.items() if entry.get('path')}
        targets.update((name, target) for name, target, _processed in rendered)
        self._check_distinct_paths(targets)
        recorded.update(self._write_variants(rendered))

        metadata = dict(metadata)
        metadata['variants'] = recorded
        metadata['updated_at'] = timezone.now().isoformat()
        self._persist(instance, metadata)
        logger.info(f"Reprocessed {', '.join(spec.name for spec in specs) or 'no variants'} for '{self.name}' (pk={instance.pk})")
        return [spec.name for spec in specs]

    # Internals

    def _recorded_paths(self) -> List[str]:
        return [entry['path'] for entry in self._recorded_variants().values() if entry.get('path')]

    def _build_path(self, instance, variant: str, filename: str) -> str:
        try:
            return interpolate(self.options.path_template, instance, self.name, variant, filename)
        except ValueError as e:
            raise ProcessingError(str(e)) from e

    def _render_variants(self, instance, source: StorableFile, specs: List[VariantSpec]) -> List[tuple]:
        """Render variants and resolve their target paths. Nothing is written yet."""
        rendered = []
        for spec in specs:
            processed = self.processor.process(source, spec)
            filename = variant_filename(source.name, processed.extension)
            rendered.append((spec.name, self._build_path(instance, spec.name, filename), processed))
        return rendered

    def _check_distinct_paths(self, targets: Dict[str, str]) -> None:
        """
        Raises:
            ProcessingError: If two variants would be written to the same path
        """
        seen = {}
        for variant, path in targets.items():
            if path in seen:
                raise ProcessingError(
                    f"Variants '{seen[path]}' and '{variant}' of attachment '{self.name}' both resolve "
                    f"to {path}; the path template needs :variant"
                )
            seen[path] = variant

    def _write_variants(self, rendered: List[tuple]) -> Dict[str, dict]:
        """Write rendered variants; any failure aborts the whole batch."""
        written = {}
        storage = self.storage
        for name, path, processed in rendered:
            try:
                stored = storage.write(path, processed.data)
            except Exception as e:
                raise ProcessingError(f"Cannot write variant '{name}' to {path}: {e}") from e
            written[name] = {
                'path': stored,
                'size': processed.size,
                'content_type': processed.content_type,
            }
        return written

    def _process_upload(self, instance) -> None:
        if instance.pk is None:
            raise ProcessingError(f"Cannot store attachment '{self.name}' before the instance has a primary key")

        source = self._pending_file
        previous = self._recorded_paths()

        try:
            path = self._build_path(instance, ORIGINAL_VARIANT, source.name)
            rendered = self._render_variants(instance, source, list(self.options.variants))
            targets = {ORIGINAL_VARIANT: path}
            targets.update((name, target) for name, target, _processed in rendered)
            self._check_distinct_paths(targets)

            try:
                stored = self.storage.write(path, source.data)
            except Exception as e:
                raise ProcessingError(f"Cannot write original of '{self.name}' to {path}: {e}") from e

            variants = {
                ORIGINAL_VARIANT: {
                    'path': stored,
                    'size': source.size,
                    'content_type': source.content_type,
                },
            }
            variants.update(self._write_variants(rendered))
        except ProcessingError:
            logger.error(
                f"Processing attachment '{self.name}' failed for "
                f"{instance.__class__.__name__} (pk={instance.pk})",
                exc_info=True,
            )
            raise

        metadata = {
            'file_name': source.name,
            'file_size': source.size,
            'content_type': source.content_type,
            'updated_at': timezone.now().isoformat(),
            'variants': variants,
        }
        self._persist(instance, metadata)

        self._pending_file = None
        self.state = AttachmentState.PROCESSED
        logger.info(
            f"Stored {source.name} for '{self.name}' on {instance.__class__.__name__} "
            f"(pk={instance.pk}) with variants: {', '.join(variants)}"
        )

        if not (self.options.should_keep_old_files or self.options.should_preserve_files):
            current = {entry['path'] for entry in variants.values()}
            self.delete_errors = self._delete_paths([p for p in previous if p not in current])

    def _process_deletion(self, instance) -> None:
        paths = self._recorded_paths()
        if not self.options.should_preserve_files:
            self.delete_errors = self._delete_paths(paths)

        if self._metadata():
            self._persist(instance, {})

        self.state = AttachmentState.DELETED
        logger.info(f"Cleared attachment '{self.name}' on {instance.__class__.__name__} (pk={instance.pk})")

    def _persist(self, instance, metadata: dict) -> None:
        # Triggers post_save again; the coordinator has already cleared the dirty flag
        column = self.descriptor.column
        setattr(instance, column, metadata)
        instance.save(update_fields=[column])

    def _delete_paths(self, paths: List[str]) -> List[StorageDeleteError]:
        errors = []
        if not paths:
            return errors

        storage = self.storage
        for path in paths:
            try:
                deleted = storage.delete(path)
            except Exception as e:
                logger.warning(f"Failed to delete {path} for attachment '{self.name}': {e}", exc_info=True)
                errors.append(StorageDeleteError(f"Failed to delete {path}: {e}", path=path))
                continue

            if not deleted:
                logger.warning(f"Storage refused to delete {path} for attachment '{self.name}'")
                errors.append(StorageDeleteError(f"Storage refused to delete {path}", path=path))
        return errors
