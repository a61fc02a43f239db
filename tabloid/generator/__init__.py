"""Image generator boundary and the Replicate adapter."""

from tabloid.generator.base import (
    GeneratedImage,
    GenerationInput,
    Generator,
    GeneratorError,
)
from tabloid.generator.replicate import ReplicateGenerator, get_generator

__all__ = [
    "GeneratedImage",
    "GenerationInput",
    "Generator",
    "GeneratorError",
    "ReplicateGenerator",
    "get_generator",
]
