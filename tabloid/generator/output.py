"""Normalize heterogeneous model output into a typed image reference.

Image models return anything from a bare URL string to nested dicts of
candidates. This walks the payload once and picks the best reference:
http URL > data URL > raw base64.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Any

from tabloid.generator.base import GeneratorError

# Keys that may hold an image reference in a dict-shaped output
_CANDIDATE_KEYS = ("url", "href", "image", "image_base64", "imageBase64", "data", "output")

# Shorter strings are log lines or ids, not images
MIN_BASE64_CHARS = 200


@dataclass(frozen=True)
class ImageReference:
    kind: str  # url | dataurl | base64 | none
    value: str = ""


def _collect(value: Any, out: list[str]) -> None:
    if not value:
        return
    if isinstance(value, str):
        out.append(value)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect(item, out)
    elif isinstance(value, dict):
        for key in _CANDIDATE_KEYS:
            item = value.get(key)
            if isinstance(item, str):
                out.append(item)
        nested = value.get("output")
        if isinstance(nested, (dict, list, tuple)):
            _collect(nested, out)


def extract_image(output: Any) -> ImageReference:
    candidates: list[str] = []
    _collect(output, candidates)

    for c in candidates:
        if c.startswith("http"):
            return ImageReference("url", c)
    for c in candidates:
        if c.startswith("data:image"):
            return ImageReference("dataurl", c)
    for c in candidates:
        if len(c) > MIN_BASE64_CHARS and " " not in c:
            return ImageReference("base64", c)
    return ImageReference("none")


def decode_inline(ref: ImageReference) -> bytes:
    """Decode a dataurl/base64 reference to bytes."""
    payload = ref.value.split(",")[-1] if ref.kind == "dataurl" else ref.value
    try:
        return base64.b64decode(payload)
    except (binascii.Error, ValueError) as e:
        raise GeneratorError(f"Undecodable {ref.kind} image: {e}") from e
