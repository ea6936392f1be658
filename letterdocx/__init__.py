from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .engine import LetterSynthesizer, SynthesisResult, synthesize_letter
from .errors import (
    AssemblyFailure,
    CorruptPackage,
    InvalidForm,
    MissingRequiredPart,
    PatternNotFound,
    SynthesisError,
)
from .layout import RenderTarget
from .models import AppendedImage, ImageAsset, LetterForm, TableModel

__all__ = [
    "DEFAULT_CONVENTIONS",
    "TemplateConventions",
    "LetterSynthesizer",
    "SynthesisResult",
    "synthesize_letter",
    "AssemblyFailure",
    "CorruptPackage",
    "InvalidForm",
    "MissingRequiredPart",
    "PatternNotFound",
    "SynthesisError",
    "RenderTarget",
    "AppendedImage",
    "ImageAsset",
    "LetterForm",
    "TableModel",
]
