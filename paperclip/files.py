"""
Uploaded-file normalization.

Whatever is assigned to an attachment (an uploaded file, raw bytes, a path,
a URL, a data URI or a stream) is turned into a ``StorableFile`` before the
attachment records it. Nothing is written to storage here.
"""

import base64
import binascii
import logging
import mimetypes
import os
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlparse

import httpx
from django.core.files.base import File
from PIL import Image, UnidentifiedImageError

from .conf import get_setting
from .exceptions import InvalidUploadError
from .paths import sanitize_filename

logger = logging.getLogger(__name__)

# Size in bytes for reading uploaded files in chunks
FILE_CHUNK_SIZE = 8192

DEFAULT_CONTENT_TYPE = 'application/octet-stream'


@dataclass(frozen=True)
class StorableFile:
    """An uploaded file held in memory, ready to be written to storage."""

    name: str
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith('image/')

    @property
    def extension(self) -> str:
        return os.path.splitext(self.name)[1].lstrip('.').lower()

    def __repr__(self):
        return f"<StorableFile {self.name} ({self.content_type}, {self.size} bytes)>"


def _sniff_image(data: bytes):
    """Return (content_type, extension) if data is an image Pillow can identify."""
    try:
        with Image.open(BytesIO(data)) as image:
            image_format = image.format
    except Image.DecompressionBombError as e:
        raise InvalidUploadError(f"Image is too large to be processed: {e}") from e
    except (UnidentifiedImageError, OSError, ValueError):
        return None, None

    content_type = Image.MIME.get(image_format)
    extension = mimetypes.guess_extension(content_type) if content_type else None
    if extension == '.jpe':
        extension = '.jpg'
    return content_type, extension


def _guess_content_type(name: str, data: bytes, declared: Optional[str] = None) -> str:
    declared = (declared or '').split(';', 1)[0].strip().lower()
    if declared and declared != DEFAULT_CONTENT_TYPE:
        return declared

    guessed, _encoding = mimetypes.guess_type(name)
    if guessed:
        return guessed

    sniffed, _extension = _sniff_image(data)
    return sniffed or DEFAULT_CONTENT_TYPE


class StorableFileFactory:
    """
    Normalizes heterogeneous upload values into StorableFile objects.

    Example:
        >>> factory = StorableFileFactory()
        >>> factory.make_from_any(request.FILES['avatar'])
        >>> factory.make_from_any('https://example.com/logo.png')
        >>> factory.make_from_any(b'...', name='logo.png')
    """

    def __init__(self, max_size_mb: Optional[float] = None, timeout: Optional[float] = None):
        """
        Args:
            max_size_mb: Maximum upload size (defaults to PAPERCLIP['MAX_UPLOAD_SIZE_MB'])
            timeout: Download timeout in seconds (defaults to PAPERCLIP['DOWNLOAD_TIMEOUT'])
        """
        max_size_mb = max_size_mb if max_size_mb is not None else get_setting('MAX_UPLOAD_SIZE_MB')
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.timeout = timeout if timeout is not None else get_setting('DOWNLOAD_TIMEOUT')

    def make_from_any(self, value: Any, name: Optional[str] = None) -> StorableFile:
        """
        Turn any supported value into a StorableFile.

        Args:
            value: StorableFile, Django File/UploadedFile, bytes, data URI,
                   http(s) URL, filesystem path or readable stream
            name: Optional filename override

        Returns:
            StorableFile

        Raises:
            InvalidUploadError: If the value cannot be read or is not acceptable
        """
        if isinstance(value, StorableFile):
            storable = value
        elif isinstance(value, File):
            storable = self.make_from_django_file(value)
        elif isinstance(value, (bytes, bytearray)):
            storable = self.make_from_bytes(bytes(value), name)
        elif isinstance(value, str) and value.startswith('data:'):
            storable = self.make_from_data_uri(value, name)
        elif isinstance(value, str) and value.lower().startswith(('http://', 'https://')):
            storable = self.make_from_url(value)
        elif isinstance(value, (str, Path)):
            storable = self.make_from_path(value)
        elif hasattr(value, 'read'):
            storable = self.make_from_stream(value)
        else:
            raise InvalidUploadError(f"Cannot make an uploaded file from {type(value).__name__}")

        if name:
            storable = StorableFile(
                name=sanitize_filename(name),
                data=storable.data,
                content_type=_guess_content_type(name, storable.data, storable.content_type),
            )

        self._check(storable)
        return storable

    def make_from_django_file(self, file: File) -> StorableFile:
        name = os.path.basename(file.name or '') or 'file'
        try:
            declared_size = file.size
        except (AttributeError, OSError):
            declared_size = None
        if declared_size:
            self._check_size(declared_size)

        chunks = []
        total = 0
        try:
            if hasattr(file, 'seek'):
                file.seek(0)
            for chunk in file.chunks(FILE_CHUNK_SIZE):
                total += len(chunk)
                self._check_size(total)
                chunks.append(chunk)
        except (OSError, ValueError) as e:
            raise InvalidUploadError(f"Cannot read uploaded file {name}: {e}") from e
        data = b''.join(chunks)

        declared = getattr(file, 'content_type', None)
        return StorableFile(
            name=sanitize_filename(name),
            data=data,
            content_type=_guess_content_type(name, data, declared),
        )

    def make_from_bytes(self, data: bytes, name: Optional[str] = None) -> StorableFile:
        if not name:
            _content_type, extension = _sniff_image(data)
            name = f"file{extension or ''}"
        return StorableFile(
            name=sanitize_filename(name),
            data=data,
            content_type=_guess_content_type(name, data),
        )

    def make_from_data_uri(self, uri: str, name: Optional[str] = None) -> StorableFile:
        """Decode a 'data:<mime>;base64,<payload>' URI."""
        header, _, payload = uri.partition(',')
        if not payload or ';base64' not in header:
            raise InvalidUploadError("Only base64 encoded data URIs are supported")

        # Decoded size is at most 3/4 of the base64 payload
        self._check_size(len(payload) * 3 // 4 - payload.count('=', -2))

        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidUploadError(f"Invalid base64 payload in data URI: {e}") from e

        content_type = header[len('data:'):].split(';', 1)[0] or DEFAULT_CONTENT_TYPE
        if not name:
            extension = mimetypes.guess_extension(content_type) or ''
            name = f"file{'.jpg' if extension == '.jpe' else extension}"

        return StorableFile(
            name=sanitize_filename(name),
            data=data,
            content_type=_guess_content_type(name, data, content_type),
        )

    def make_from_url(self, url: str) -> StorableFile:
        """
        Download a remote file. No retries are attempted.

        The body is streamed and the download aborted as soon as it exceeds
        the size limit.

        Raises:
            InvalidUploadError: On timeouts, connection errors, HTTP errors
                                and oversized bodies
        """
        parsed = urlparse(url)
        logger.debug(f"Downloading upload from {parsed.scheme}://{parsed.netloc}{parsed.path}")

        chunks = []
        total = 0
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                with client.stream('GET', url) as response:
                    response.raise_for_status()

                    content_length = response.headers.get('content-length', '')
                    if content_length.isdigit():
                        self._check_size(int(content_length))

                    for chunk in response.iter_bytes():
                        total += len(chunk)
                        self._check_size(total)
                        chunks.append(chunk)
                    declared = response.headers.get('content-type')
        except httpx.HTTPStatusError as e:
            raise InvalidUploadError(
                f"Download of {url} failed (HTTP {e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise InvalidUploadError(f"Download of {url} failed: {e.__class__.__name__}: {e}") from e

        data = b''.join(chunks)
        name = unquote(os.path.basename(parsed.path)) or 'file'
        if '.' not in name:
            _content_type, extension = _sniff_image(data)
            name = f"{name}{extension or ''}"

        return StorableFile(
            name=sanitize_filename(name),
            data=data,
            content_type=_guess_content_type(name, data, declared),
        )

    def make_from_path(self, path) -> StorableFile:
        path = Path(path)
        if not path.is_file():
            raise InvalidUploadError(f"File not found: {path}")

        try:
            self._check_size(path.stat().st_size)
            data = path.read_bytes()
        except OSError as e:
            raise InvalidUploadError(f"Cannot read {path}: {e}") from e

        return StorableFile(
            name=sanitize_filename(path.name),
            data=data,
            content_type=_guess_content_type(path.name, data),
        )

    def make_from_stream(self, stream) -> StorableFile:
        raw_name = getattr(stream, 'name', None)
        name = os.path.basename(raw_name) if isinstance(raw_name, str) else None

        try:
            # One byte past the limit is enough to reject the stream
            data = stream.read(self.max_size_bytes + 1)
        except (OSError, ValueError) as e:
            raise InvalidUploadError(f"Cannot read stream: {e}") from e

        if isinstance(data, str):
            data = data.encode('utf-8')
        self._check_size(len(data))
        return self.make_from_bytes(data, name)

    def _check_size(self, size: int) -> None:
        if size > self.max_size_bytes:
            max_size_mb = self.max_size_bytes / (1024 * 1024)
            actual_size_mb = size / (1024 * 1024)
            raise InvalidUploadError(
                f"File size ({actual_size_mb:.2f}MB) exceeds maximum allowed size ({max_size_mb:.2f}MB)"
            )

    def _check(self, storable: StorableFile) -> None:
        if storable.size == 0:
            raise InvalidUploadError(f"Uploaded file {storable.name} is empty")

        self._check_size(storable.size)

        if storable.is_image:
            # Rejects images whose declared dimensions exceed Pillow's pixel limit
            _sniff_image(storable.data)
