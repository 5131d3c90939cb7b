"""
Attachment options.

Options can be given as an ``AttachmentOptions`` instance, a plain dict or
keyword arguments. Missing values fall back to the ``PAPERCLIP`` settings.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional, Tuple

from ..conf import get_setting
from ..exceptions import ConfigurationError
from .steps import VariantStep
from .variant import ORIGINAL_VARIANT, Variant, VariantSpec


@dataclass(frozen=True)
class AttachmentOptions:
    disk: Optional[str] = None
    variants: Tuple[VariantSpec, ...] = field(default_factory=tuple)
    default: str = ORIGINAL_VARIANT
    path: Optional[str] = None
    url: Optional[str] = None
    keep_old_files: Optional[bool] = None
    preserve_files: Optional[bool] = None
    column: Optional[str] = None

    def variant(self, name: str) -> Optional[VariantSpec]:
        for spec in self.variants:
            if spec.name == name:
                return spec
        return None

    @property
    def variant_names(self) -> Tuple[str, ...]:
        return (ORIGINAL_VARIANT,) + tuple(spec.name for spec in self.variants)

    # Settings-backed values are resolved on access so tests can override them

    @property
    def storage_disk(self) -> str:
        return self.disk or get_setting('STORAGE')

    @property
    def path_template(self) -> str:
        return self.path or get_setting('PATH')

    @property
    def default_url(self) -> Optional[str]:
        return self.url if self.url is not None else get_setting('DEFAULT_URL')

    @property
    def should_keep_old_files(self) -> bool:
        if self.keep_old_files is not None:
            return self.keep_old_files
        return bool(get_setting('KEEP_OLD_FILES'))

    @property
    def should_preserve_files(self) -> bool:
        if self.preserve_files is not None:
            return self.preserve_files
        return bool(get_setting('PRESERVE_FILES'))


def _build_variant(name: Optional[str], value: Any) -> VariantSpec:
    if isinstance(value, VariantSpec):
        return value
    if isinstance(value, Variant):
        return value.build()

    builder = Variant.make(name)
    if isinstance(value, str):
        builder.resize(value)
    elif isinstance(value, VariantStep):
        builder.step(value)
    elif isinstance(value, (list, tuple)):
        for step in value:
            if isinstance(step, str):
                builder.resize(step)
            else:
                builder.step(step)
    else:
        raise ConfigurationError(f"Cannot build variant '{name}' from {value!r}")
    return builder.build()


def build_variants(value: Any) -> Tuple[VariantSpec, ...]:
    """
    Normalize a variants declaration into built specs.

    Args:
        value: Iterable of Variant/VariantSpec, or a mapping of
               variant name to steps (step builders or resize shorthands)

    Returns:
        Tuple of VariantSpec in declaration order

    Raises:
        ConfigurationError: On duplicate or reserved names
        InvalidStepConfigError: If a step cannot be built
    """
    if not value:
        return ()

    if isinstance(value, Mapping):
        specs = tuple(_build_variant(name, steps) for name, steps in value.items())
    else:
        specs = tuple(_build_variant(None, item) for item in value)

    seen = set()
    for spec in specs:
        if spec.name == ORIGINAL_VARIANT:
            raise ConfigurationError(f"Variant name '{ORIGINAL_VARIANT}' is reserved for the uploaded file")
        if spec.name in seen:
            raise ConfigurationError(f"Variant '{spec.name}' is declared more than once")
        seen.add(spec.name)

    return specs


def build_options(options: Any = None, **kwargs) -> AttachmentOptions:
    """
    Build AttachmentOptions from an instance, a dict and/or keyword arguments.

    Raises:
        ConfigurationError: On unknown keys, an unknown default variant or a
                            path template that cannot tell variants apart
    """
    if isinstance(options, AttachmentOptions):
        if kwargs:
            raise ConfigurationError("Cannot combine an AttachmentOptions instance with keyword options")
        return options

    values = dict(options or {})
    values.update(kwargs)

    known = {f.name for f in fields(AttachmentOptions)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown attachment option(s): {', '.join(unknown)}")

    values['variants'] = build_variants(values.get('variants'))
    built = AttachmentOptions(**values)

    if built.default not in built.variant_names:
        raise ConfigurationError(f"Default variant '{built.default}' is not declared")

    if built.path and built.variants and ':variant' not in built.path:
        raise ConfigurationError(
            f"Path template '{built.path}' needs :variant to keep variants from overwriting the original"
        )

    return built
