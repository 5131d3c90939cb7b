"""
Variant processing with Pillow.

A ``VariantProcessor`` renders one VariantSpec from a source file by
applying its steps in order. Each step type maps to one handler function.
"""

import logging
import mimetypes
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Dict, Mapping, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .config.steps import STEP_AUTO_ORIENT, STEP_CROP, STEP_RESIZE, STEP_WATERMARK
from .config.variant import VariantSpec
from .exceptions import ProcessingError
from .files import StorableFile

logger = logging.getLogger(__name__)

# Formats that cannot store an alpha channel
NO_ALPHA_FORMATS = {'JPEG', 'BMP'}


@dataclass(frozen=True)
class ProcessedFile:
    """Rendered variant bytes and their format."""

    data: bytes
    extension: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


def _auto_orient(image: Image.Image, params: Mapping) -> Image.Image:
    return ImageOps.exif_transpose(image)


def _resize(image: Image.Image, params: Mapping) -> Image.Image:
    width, height = params.get('width'), params.get('height')
    src_width, src_height = image.size

    if params.get('crop'):
        return ImageOps.fit(image, (width, height), method=Image.Resampling.LANCZOS)

    if params.get('ignore_ratio'):
        return image.resize((width, height), Image.Resampling.LANCZOS)

    # Missing dimension follows the source ratio
    if width is None:
        width = max(1, round(src_width * height / src_height))
    if height is None:
        height = max(1, round(src_height * width / src_width))

    return ImageOps.contain(image, (width, height), method=Image.Resampling.LANCZOS)


def _crop(image: Image.Image, params: Mapping) -> Image.Image:
    x, y = params.get('x', 0), params.get('y', 0)
    box = (x, y, x + params['width'], y + params['height'])
    if box[2] > image.width or box[3] > image.height:
        raise ProcessingError(
            f"Crop box {box} exceeds image size {image.width}x{image.height}"
        )
    return image.crop(box)


def _watermark_offset(position: str, base_size, overlay_size):
    base_width, base_height = base_size
    width, height = overlay_size

    if position.endswith('left'):
        x = 0
    elif position.endswith('right'):
        x = base_width - width
    else:
        x = (base_width - width) // 2

    if position.startswith('top'):
        y = 0
    elif position.startswith('bottom'):
        y = base_height - height
    else:
        y = (base_height - height) // 2

    return x, y


def _watermark(image: Image.Image, params: Mapping) -> Image.Image:
    overlay_path = params['watermark']
    try:
        with Image.open(overlay_path) as overlay_file:
            overlay = overlay_file.convert('RGBA')
    except (Image.DecompressionBombError, UnidentifiedImageError, OSError) as e:
        raise ProcessingError(f"Cannot open watermark overlay {overlay_path}: {e}") from e

    opacity = params.get('opacity', 1.0)
    if opacity < 1.0:
        alpha = overlay.getchannel('A').point(lambda value: int(value * opacity))
        overlay.putalpha(alpha)

    base = image.convert('RGBA')
    offset = _watermark_offset(params.get('position', 'bottom-right'), base.size, overlay.size)
    base.paste(overlay, offset, overlay)
    return base


STEP_HANDLERS: Dict[str, Callable[[Image.Image, Mapping], Image.Image]] = {
    STEP_AUTO_ORIENT: _auto_orient,
    STEP_RESIZE: _resize,
    STEP_CROP: _crop,
    STEP_WATERMARK: _watermark,
}


def _output_format(variant: VariantSpec, source: StorableFile, source_format: Optional[str]):
    """Resolve (PIL format, extension) for the rendered variant."""
    extension = variant.extension or source.extension
    if extension:
        image_format = Image.registered_extensions().get(f".{extension}")
        if image_format is None:
            raise ProcessingError(f"Unsupported output extension '{extension}' for variant '{variant.name}'")
        return image_format, extension

    if source_format:
        return source_format, source_format.lower()

    raise ProcessingError(f"Cannot determine output format for variant '{variant.name}'")


class VariantProcessor:
    """
    Renders variants of an uploaded image.

    Example:
        >>> processor = VariantProcessor()
        >>> processed = processor.process(storable, thumb_spec)
        >>> storage.write(path, processed.data)
    """

    def process(self, source: StorableFile, variant: VariantSpec) -> ProcessedFile:
        """
        Apply a variant's steps to the source file.

        Args:
            source: Uploaded file
            variant: Variant plan

        Returns:
            ProcessedFile with the encoded result

        Raises:
            ProcessingError: If the source is not an image or a step fails
        """
        try:
            with Image.open(BytesIO(source.data)) as opened:
                source_format = opened.format
                image = opened.copy()
        except Image.DecompressionBombError as e:
            raise ProcessingError(
                f"Cannot render variant '{variant.name}': {source.name} exceeds the image size limit: {e}"
            ) from e
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ProcessingError(
                f"Cannot render variant '{variant.name}': {source.name} is not a readable image"
            ) from e

        for step in variant.steps:
            handler = STEP_HANDLERS.get(step.step_type)
            if handler is None:
                raise ProcessingError(f"No handler for step type '{step.step_type}'")
            try:
                image = handler(image, step.parameters)
            except ProcessingError:
                raise
            except (OSError, ValueError) as e:
                raise ProcessingError(
                    f"Step '{step.step_type}' failed for variant '{variant.name}': {e}"
                ) from e

        image_format, extension = _output_format(variant, source, source_format)
        if image_format in NO_ALPHA_FORMATS and image.mode not in ('RGB', 'L'):
            image = image.convert('RGB')

        buffer = BytesIO()
        try:
            image.save(buffer, format=image_format)
        except (OSError, ValueError, KeyError) as e:
            raise ProcessingError(f"Cannot encode variant '{variant.name}' as {image_format}: {e}") from e

        content_type = Image.MIME.get(image_format) or mimetypes.guess_type(f"x.{extension}")[0]
        logger.debug(
            f"Rendered variant '{variant.name}' ({', '.join(variant.step_types) or 'no steps'}) "
            f"as {image.width}x{image.height} {image_format}"
        )
        return ProcessedFile(
            data=buffer.getvalue(),
            extension=extension,
            content_type=content_type or 'application/octet-stream',
        )
