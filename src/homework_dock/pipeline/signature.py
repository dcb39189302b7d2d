# src/homework_dock/pipeline/signature.py

"""
Worksheet signature: "<image aHash>-<text hash>".

Used to notice that the same worksheet was uploaded twice. Matching is an
exact string comparison of both halves; near-duplicates are not detected.
"""

from __future__ import annotations

import hashlib
import io
import logging
import re

from PIL import Image, UnidentifiedImageError

from .artifacts import Artifact

logger = logging.getLogger(__name__)

NO_IMAGE = "noimg"

_WS_RE = re.compile(r"\s+")


def image_ahash(artifact: Artifact | None) -> str:
    """8x8 average hash over luminance, as 16 hex chars. Non-images hash to NO_IMAGE."""
    if artifact is None or not artifact.is_image:
        return NO_IMAGE
    try:
        with Image.open(io.BytesIO(artifact.content)) as src:
            # "L" uses the ITU-R 601-2 luma weights (0.299, 0.587, 0.114).
            small = src.convert("L").resize((8, 8), Image.Resampling.BILINEAR)
            px = list(small.getdata())
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        logger.debug("aHash: undecodable image name=%s", artifact.name)
        return NO_IMAGE

    avg = sum(px) / len(px)
    bits = "".join("1" if v > avg else "0" for v in px)
    return "".join(f"{int(bits[i : i + 4], 2):x}" for i in range(0, len(bits), 4))


def normalize_text(text: str | None) -> str:
    clean = _WS_RE.sub(" ", (text or "").lower())
    return "".join(ch for ch in clean if ch.isalnum() or ch == " ")


def text_hash(text: str | None) -> str:
    """First 8 hex chars of SHA-256 over the normalized text."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()[:8]


def worksheet_signature(artifact: Artifact | None, ocr_text: str | None) -> str:
    return f"{image_ahash(artifact)}-{text_hash(ocr_text)}"
