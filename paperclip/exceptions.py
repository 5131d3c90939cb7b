"""
Paperclip exceptions for consistent error handling.

Configuration errors are raised while models declare their attachments and
are meant to fail at startup. Upload and processing errors are raised while
an entity is being assigned or saved. Storage delete errors are collected and
logged, never raised, because file cleanup is best-effort.
"""


class PaperclipError(Exception):
    """Base exception for all attachment-related errors."""
    pass


class ConfigurationError(PaperclipError):
    """
    Raised when an attachment or variant is declared with invalid options.

    Example:
        Registering an attachment with an unknown option key, or after
        entity instances have already materialized their attachments.
    """
    pass


class DuplicateAttachmentError(ConfigurationError):
    """Raised when an attachment name is registered twice for one entity type."""
    pass


class InvalidStepConfigError(ConfigurationError):
    """
    Raised when a variant step is built without its required parameters.

    Example:
        A watermark step without an overlay path.
    """
    pass


class UnknownAttachmentError(PaperclipError):
    """Raised when looking up an attachment name that was never registered."""
    pass


class UnknownVariantError(PaperclipError):
    """Raised when looking up a variant name the attachment does not declare."""
    pass


class InvalidUploadError(PaperclipError):
    """
    Raised when a value assigned to an attachment cannot be turned into a file.

    The attachment and its entity are left unchanged.
    """
    pass


class ProcessingError(PaperclipError):
    """
    Raised when a variant cannot be rendered or written to storage.

    No variant metadata is recorded for the failed save cycle. Files that were
    already written stay in storage as orphans.
    """
    pass


class StorageDeleteError(PaperclipError):
    """
    A file could not be removed from storage.

    Attributes:
        path: Storage path that could not be deleted
    """

    def __init__(self, message, path=None):
        super().__init__(message)
        self.path = path
