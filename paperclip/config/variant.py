"""
Variant builder.

A variant is a derived rendering of an uploaded file, produced by applying an
ordered list of steps. Order matters: ``[resize, watermark]`` stamps a
full-size overlay on the small image, ``[watermark, resize]`` shrinks it
together with the image.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..exceptions import InvalidStepConfigError
from .steps import (
    AutoOrientStep,
    CropStep,
    ResizeStep,
    StepSpec,
    VariantStep,
    WatermarkStep,
)


ORIGINAL_VARIANT = 'original'


@dataclass(frozen=True)
class VariantSpec:
    """Immutable, ordered plan for rendering one named variant."""

    name: str
    steps: Tuple[StepSpec, ...] = ()
    extension: Optional[str] = None

    @property
    def step_types(self) -> Tuple[str, ...]:
        return tuple(step.step_type for step in self.steps)


class Variant:
    """
    Fluent builder for a named variant.

    Example:
        >>> Variant.make('thumb').auto_orient().resize('100x100#').extension('jpg').build()
        >>> Variant.make('medium').steps(
        ...     ResizeStep.make().square(300),
        ...     WatermarkStep.make().path(overlay).opacity(0.5),
        ... ).build()
    """

    def __init__(self, name: str):
        self._name = name
        self._steps = []
        self._extension: Optional[str] = None

    @classmethod
    def make(cls, name: str) -> 'Variant':
        return cls(name)

    @property
    def name(self) -> str:
        return self._name

    def step(self, step: Union[VariantStep, StepSpec]) -> 'Variant':
        """Append a step; steps are applied in the order they are added."""
        self._steps.append(step)
        return self

    def steps(self, *steps: Union[VariantStep, StepSpec]) -> 'Variant':
        for step in steps:
            self.step(step)
        return self

    def auto_orient(self) -> 'Variant':
        return self.step(AutoOrientStep.make())

    def resize(self, dimensions: Union[str, ResizeStep]) -> 'Variant':
        if isinstance(dimensions, ResizeStep):
            return self.step(dimensions)
        return self.step(ResizeStep.from_dimensions(dimensions))

    def crop(self, width: int, height: int, x: int = 0, y: int = 0) -> 'Variant':
        return self.step(CropStep.make().width(width).height(height).offset(x, y))

    def watermark(self, path, position: str = 'bottom-right', opacity: float = 1.0) -> 'Variant':
        return self.step(WatermarkStep.make().path(path).position(position).opacity(opacity))

    def extension(self, extension: Optional[str]) -> 'Variant':
        """Force the output format of this variant (e.g. 'jpg')."""
        self._extension = extension.lstrip('.').lower() if extension else None
        return self

    def build(self) -> VariantSpec:
        """
        Build the immutable variant specification.

        Returns:
            VariantSpec with every step validated and frozen

        Raises:
            InvalidStepConfigError: If the name is empty or any step is invalid
        """
        if not self._name or not str(self._name).strip():
            raise InvalidStepConfigError("Variant name cannot be empty")

        built = []
        for step in self._steps:
            if isinstance(step, StepSpec):
                built.append(step)
            elif isinstance(step, VariantStep):
                try:
                    built.append(step.build())
                except InvalidStepConfigError as e:
                    raise InvalidStepConfigError(f"Variant '{self._name}': {e}") from e
            else:
                raise InvalidStepConfigError(
                    f"Variant '{self._name}': unsupported step {step!r}"
                )

        return VariantSpec(name=self._name, steps=tuple(built), extension=self._extension)
