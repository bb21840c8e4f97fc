"""Illustrative image generation for a diagnosis via the OpenAI Images API.

Image generation is an enrichment step: callers catch
:class:`ImageGenerationError` and carry on without an image.

Honors environment variables (see :mod:`medviz.config`):
  - MEDVIZ_ALLOW_IMAGEGEN (must be truthy to call)
  - OPENAI_IMAGE_MODEL (default: dall-e-3)
  - OPENAI_IMAGE_SIZE (default: 1024x1024)
  - OPENAI_TIMEOUT (seconds; default: 60)
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from openai import OpenAI

from . import config
from .extract import Finding

logger = logging.getLogger("medviz.imagegen")


class ImageGenerationError(RuntimeError):
    """The image service failed or returned nothing usable."""


def build_prompt(findings: Iterable[Finding]) -> str:
    """Describe the findings as an anatomical illustration request."""
    items = [
        f"{f.severity} {f.condition.lower()} affecting the {f.body_part.lower()}"
        for f in findings
    ]
    if not items:
        items = ["no specific findings"]
    return (
        "Clean, friendly medical illustration of a human body outline for a patient "
        "education handout. Highlight the affected areas with soft colour overlays: "
        + "; ".join(items)
        + ". No text, no labels, no gore, neutral background."
    )


def generate_image(prompt: str) -> Optional[str]:
    """Generate an image for ``prompt`` and return its URL.

    Returns ``None`` when image generation is switched off. Raises
    :class:`ImageGenerationError` when the API call fails or returns no image.
    """
    if not config.imagegen_enabled():
        logger.info("Image generation disabled by MEDVIZ_ALLOW_IMAGEGEN")
        return None

    model = config.image_model()
    try:
        client = OpenAI(timeout=config.openai_timeout())
        resp = client.images.generate(
            model=model,
            prompt=prompt,
            size=config.image_size(),
            n=1,
        )
    except Exception as exc:
        raise ImageGenerationError(f"OpenAI images.generate failed: {exc}") from exc

    data = getattr(resp, "data", None) or []
    if not data:
        raise ImageGenerationError("OpenAI returned no image data")

    first = data[0]
    url = getattr(first, "url", None)
    if url:
        return url
    # gpt-image models answer with base64 only
    b64 = getattr(first, "b64_json", None)
    if b64:
        return f"data:image/png;base64,{b64}"
    raise ImageGenerationError("OpenAI image response had neither url nor b64_json")
