"""
Variant step builders.

Each step is one transformation applied to an uploaded image while rendering
a variant. Builders are fluent so a step can be configured incrementally;
required parameters are only checked in ``build()``.

Example:
    >>> ResizeStep.make().width(100).height(100).crop().build()
    StepSpec(step_type='resize', parameters=...)
    >>> WatermarkStep.make().path('/srv/overlay.png').position('center').opacity(0.4).build()
    StepSpec(step_type='watermark', parameters=...)
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from ..exceptions import InvalidStepConfigError


STEP_AUTO_ORIENT = 'auto-orient'
STEP_RESIZE = 'resize'
STEP_CROP = 'crop'
STEP_WATERMARK = 'watermark'

STEP_TYPES = (STEP_AUTO_ORIENT, STEP_RESIZE, STEP_CROP, STEP_WATERMARK)

WATERMARK_POSITIONS = (
    'top-left', 'top', 'top-right',
    'left', 'center', 'right',
    'bottom-left', 'bottom', 'bottom-right',
)

# 100x100, 100x, x100, with an optional '#' (crop) or '!' (ignore ratio) suffix
DIMENSIONS_PATTERN = re.compile(r'^(?P<width>\d*)x(?P<height>\d*)(?P<flag>[#!]?)$')


class StepParameters(Mapping):
    """Read-only mapping of step parameters that survives pickling and deepcopy."""

    def __init__(self, values=()):
        self._values = dict(values)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self):
        return f"StepParameters({self._values!r})"


@dataclass(frozen=True)
class StepSpec:
    """Immutable specification of one processing step."""

    step_type: str
    parameters: Mapping[str, Any] = field(default_factory=StepParameters)

    def __post_init__(self):
        object.__setattr__(self, 'parameters', StepParameters(self.parameters))


class VariantStep:
    """
    Base class for step builders.

    Subclasses set ``step_type`` and implement ``get_step_options()`` and,
    where parameters are required, ``validate()``.
    """

    step_type: str = ''

    @classmethod
    def make(cls):
        return cls()

    def get_step_options(self) -> dict:
        return {}

    def validate(self) -> None:
        pass

    def build(self) -> StepSpec:
        """
        Validate the configured parameters and freeze them.

        Raises:
            InvalidStepConfigError: If a required parameter is missing or invalid
        """
        if self.step_type not in STEP_TYPES:
            raise InvalidStepConfigError(f"Unsupported step type '{self.step_type}'")
        self.validate()
        return StepSpec(step_type=self.step_type, parameters=self.get_step_options())

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.get_step_options()!r}>"


class AutoOrientStep(VariantStep):
    """Rotate the image according to its EXIF orientation tag."""

    step_type = STEP_AUTO_ORIENT


class ResizeStep(VariantStep):
    """
    Resize the image.

    Without flags the image is fitted inside the box keeping its ratio.
    ``crop()`` fills the box exactly, trimming the overflow around the center.
    ``ignore_ratio()`` stretches the image to the exact box.
    """

    step_type = STEP_RESIZE

    def __init__(self):
        self._width: Optional[int] = None
        self._height: Optional[int] = None
        self._crop = False
        self._ignore_ratio = False
        self._dimensions: Optional[str] = None

    @classmethod
    def from_dimensions(cls, dimensions: str) -> 'ResizeStep':
        """
        Build a resize step from a shorthand string.

        Args:
            dimensions: '100x100' (fit), '100x100#' (crop), '100x100!' (exact),
                        '100x' (width only) or 'x100' (height only)

        The string is parsed by build(); an invalid shorthand raises
        InvalidStepConfigError there.
        """
        step = cls()
        step._dimensions = str(dimensions)
        return step

    def _apply_dimensions(self) -> None:
        if self._dimensions is None:
            return

        match = DIMENSIONS_PATTERN.match(self._dimensions.strip())
        if not match:
            raise InvalidStepConfigError(f"Invalid resize dimensions '{self._dimensions}'")

        if match.group('width'):
            self._width = int(match.group('width'))
        if match.group('height'):
            self._height = int(match.group('height'))
        if match.group('flag') == '#':
            self._crop = True
        elif match.group('flag') == '!':
            self._ignore_ratio = True
        self._dimensions = None

    def width(self, width: int) -> 'ResizeStep':
        self._width = width
        return self

    def height(self, height: int) -> 'ResizeStep':
        self._height = height
        return self

    def square(self, size: int) -> 'ResizeStep':
        self._width = size
        self._height = size
        return self

    def crop(self) -> 'ResizeStep':
        self._crop = True
        return self

    def ignore_ratio(self) -> 'ResizeStep':
        self._ignore_ratio = True
        return self

    def validate(self) -> None:
        self._apply_dimensions()
        if self._width is None and self._height is None:
            raise InvalidStepConfigError("Resize step requires a width or a height")

        for label, value in (('width', self._width), ('height', self._height)):
            if value is not None and (not isinstance(value, int) or value <= 0):
                raise InvalidStepConfigError(f"Resize {label} must be a positive integer, got {value!r}")

        if (self._crop or self._ignore_ratio) and (self._width is None or self._height is None):
            raise InvalidStepConfigError("Resize step needs both width and height to crop or ignore the ratio")

        if self._crop and self._ignore_ratio:
            raise InvalidStepConfigError("Resize step cannot both crop and ignore the ratio")

    def get_step_options(self) -> dict:
        return {
            'width': self._width,
            'height': self._height,
            'crop': self._crop,
            'ignore_ratio': self._ignore_ratio,
        }


class CropStep(VariantStep):
    """Cut a fixed box out of the image, starting at (x, y)."""

    step_type = STEP_CROP

    def __init__(self):
        self._width: Optional[int] = None
        self._height: Optional[int] = None
        self._x = 0
        self._y = 0

    def width(self, width: int) -> 'CropStep':
        self._width = width
        return self

    def height(self, height: int) -> 'CropStep':
        self._height = height
        return self

    def offset(self, x: int, y: int) -> 'CropStep':
        self._x = x
        self._y = y
        return self

    def validate(self) -> None:
        if self._width is None or self._height is None:
            raise InvalidStepConfigError("Crop step requires both width and height")
        if self._width <= 0 or self._height <= 0:
            raise InvalidStepConfigError("Crop width and height must be positive")
        if self._x < 0 or self._y < 0:
            raise InvalidStepConfigError("Crop offset cannot be negative")

    def get_step_options(self) -> dict:
        return {
            'width': self._width,
            'height': self._height,
            'x': self._x,
            'y': self._y,
        }


class WatermarkStep(VariantStep):
    """Paste an overlay image onto the variant."""

    step_type = STEP_WATERMARK

    def __init__(self):
        self._path: Optional[str] = None
        self._position = 'bottom-right'
        self._opacity = 1.0

    def path(self, path) -> 'WatermarkStep':
        self._path = str(path) if path is not None else None
        return self

    def position(self, position: str) -> 'WatermarkStep':
        self._position = position
        return self

    def opacity(self, opacity: float) -> 'WatermarkStep':
        self._opacity = float(opacity)
        return self

    def validate(self) -> None:
        if not self._path:
            raise InvalidStepConfigError("Watermark step requires an overlay path")
        if self._position not in WATERMARK_POSITIONS:
            raise InvalidStepConfigError(
                f"Invalid watermark position '{self._position}', expected one of {', '.join(WATERMARK_POSITIONS)}"
            )
        if not 0.0 <= self._opacity <= 1.0:
            raise InvalidStepConfigError(f"Watermark opacity must be between 0 and 1, got {self._opacity}")

    def get_step_options(self) -> dict:
        return {
            'watermark': self._path,
            'position': self._position,
            'opacity': self._opacity,
        }
