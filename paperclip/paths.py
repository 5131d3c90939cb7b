"""
Path generation and sanitization for attachment storage
"""

import os
import re
from typing import Optional

# Maximum length for a sanitized filename (excluding extension)
MAX_FILENAME_LENGTH = 100

INTERPOLATION_PATTERN = re.compile(r':([a-z_]+)')


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent directory traversal and ensure storage compatibility.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use in a storage path
    """
    filename = os.path.basename(filename.replace('\\', '/'))

    name_parts = filename.rsplit('.', 1)
    name = name_parts[0]
    ext = f".{name_parts[1].lower()}" if len(name_parts) > 1 else ""
    ext = re.sub(r'[^a-z0-9.]', '', ext)

    # Keep alphanumeric, dash and underscore
    name = re.sub(r'[^a-zA-Z0-9\-_]', '_', name)
    name = re.sub(r'_+', '_', name).strip('_')

    if not name:
        name = "file"

    if len(name) > MAX_FILENAME_LENGTH:
        name = name[:MAX_FILENAME_LENGTH]

    return f"{name}{ext}"


def variant_filename(filename: str, extension: Optional[str]) -> str:
    """Swap the extension of a filename for a variant rendered in another format."""
    if not extension:
        return filename
    basename, _ = os.path.splitext(filename)
    return f"{basename}.{extension}"


def id_partition(pk) -> str:
    """
    Split an id into a nested directory path.

    42 becomes '000/000/042'; non-numeric ids are split in chunks of three.
    """
    value = str(pk)
    if value.isdigit():
        value = value.zfill(9)
    return '/'.join(value[i:i + 3] for i in range(0, len(value), 3))


def interpolate(template: str, instance, attachment_name: str, variant: str, filename: str) -> str:
    """
    Build a storage path (or URL) for one variant of an attachment.

    Supported placeholders:
        :app_label, :class, :class_name, :id, :id_partition,
        :attachment, :variant, :filename, :basename, :extension

    Args:
        template: Path template, e.g. ':class_name/:id/:attachment/:variant/:filename'
        instance: Owning model instance (must have a primary key for :id)
        attachment_name: Name of the attachment
        variant: Variant name
        filename: Sanitized filename of the variant

    Returns:
        Interpolated path

    Raises:
        ValueError: If the template references an unknown placeholder
    """
    meta = instance._meta
    basename, extension = os.path.splitext(filename)
    pk = '' if instance.pk is None else str(instance.pk)

    values = {
        'app_label': meta.app_label,
        'class': f"{meta.app_label}/{meta.model_name}",
        'class_name': meta.model_name,
        'id': pk,
        'id_partition': id_partition(pk) if pk else '',
        'attachment': attachment_name,
        'variant': variant,
        'filename': filename,
        'basename': basename,
        'extension': extension.lstrip('.'),
    }

    def replace(match):
        key = match.group(1)
        if key not in values:
            raise ValueError(f"Unknown path placeholder ':{key}' in '{template}'")
        return values[key]

    return INTERPOLATION_PATTERN.sub(replace, template)
