"""
Attachment configuration: options, variants and their processing steps.
"""

from .options import AttachmentOptions, build_options
from .steps import (
    AutoOrientStep,
    CropStep,
    ResizeStep,
    StepSpec,
    VariantStep,
    WatermarkStep,
)
from .variant import ORIGINAL_VARIANT, Variant, VariantSpec

__all__ = [
    'AttachmentOptions',
    'build_options',
    'AutoOrientStep',
    'CropStep',
    'ResizeStep',
    'StepSpec',
    'VariantStep',
    'WatermarkStep',
    'ORIGINAL_VARIANT',
    'Variant',
    'VariantSpec',
]
