# src/homework_dock/pipeline/compress.py

from __future__ import annotations

import io
import logging
from pathlib import PurePath

from PIL import Image, ImageOps, UnidentifiedImageError

from ..core.errors import CompressionError
from .artifacts import Artifact

logger = logging.getLogger(__name__)


class JpegCompressor:
    """
    Shrink photos before upload: honour EXIF rotation, cap the longest side,
    re-encode as JPEG. Non-image artifacts pass through untouched.
    """

    def __init__(self, *, max_side: int = 1600, quality: int = 80) -> None:
        self.max_side = max(64, int(max_side))
        self.quality = max(1, min(95, int(quality)))

    def compress(self, artifact: Artifact) -> Artifact:
        if not artifact.is_image:
            return artifact

        try:
            with Image.open(io.BytesIO(artifact.content)) as src:
                img = ImageOps.exif_transpose(src)
                if img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")
                img.thumbnail((self.max_side, self.max_side), Image.Resampling.LANCZOS)

                buf = io.BytesIO()
                img.save(buf, format="JPEG", quality=self.quality, optimize=True)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise CompressionError(f"Cannot decode image {artifact.name!r}: {e}") from e

        data = buf.getvalue()
        if len(data) >= artifact.size:
            # Already small (or re-encoding made it bigger): keep the original bytes.
            logger.debug("Compression skipped name=%s size=%s", artifact.name, artifact.size)
            return artifact

        name = str(PurePath(artifact.name).with_suffix(".jpg")) if artifact.name else "upload.jpg"
        logger.debug("Compressed name=%s %s -> %s bytes", artifact.name, artifact.size, len(data))
        return Artifact(name=name, content=data, content_type="image/jpeg")
