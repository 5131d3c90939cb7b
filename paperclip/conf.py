"""
Settings access for Paperclip.

All options live in a single ``PAPERCLIP`` dict in the Django settings.
Values are read on every call so ``override_settings`` works in tests.

Example:
    PAPERCLIP = {
        'STORAGE': 'media',
        'PATH': ':class_name/:id/:attachment/:variant/:filename',
        'MAX_UPLOAD_SIZE_MB': 10,
    }
"""

from typing import Any

from django.conf import settings

from .exceptions import ConfigurationError


DEFAULTS = {
    # Alias in settings.STORAGES used when an attachment names no disk
    'STORAGE': 'default',
    'PATH': ':app_label/:class_name/:id_partition/:attachment/:variant/:filename',
    'DEFAULT_URL': None,
    'KEEP_OLD_FILES': False,
    'PRESERVE_FILES': False,
    'MAX_UPLOAD_SIZE_MB': 25,
    'DOWNLOAD_TIMEOUT': 30.0,
    # Assigning this value to an attachment clears it
    'NULL_ATTACHMENT': '__paperclip_null__',
}


def get_setting(key: str) -> Any:
    """
    Get a Paperclip setting, falling back to its default.

    Args:
        key: Setting name (e.g. 'STORAGE')

    Returns:
        The configured value or the default

    Raises:
        ConfigurationError: If the key is not a known setting
    """
    if key not in DEFAULTS:
        raise ConfigurationError(f"Unknown Paperclip setting '{key}'")

    overrides = getattr(settings, 'PAPERCLIP', None) or {}
    return overrides.get(key, DEFAULTS[key])
