# tests/test_compress_signature.py

from __future__ import annotations

import hashlib
import io
import random

import pytest
from PIL import Image

from homework_dock.core.errors import CompressionError
from homework_dock.pipeline.artifacts import Artifact
from homework_dock.pipeline.compress import JpegCompressor
from homework_dock.pipeline.signature import (
    NO_IMAGE,
    image_ahash,
    normalize_text,
    text_hash,
    worksheet_signature,
)

from .fakes import image_artifact


def _noisy_png(size: tuple[int, int]) -> bytes:
    img = Image.frombytes("RGB", size, random.Random(0).randbytes(size[0] * size[1] * 3))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def test_large_image_is_downscaled_to_jpeg() -> None:
    artifact = Artifact("foto.png", _noisy_png((1600, 800)), "image/png")

    out = JpegCompressor(max_side=400, quality=70).compress(artifact)

    assert out.content_type == "image/jpeg"
    assert out.name == "foto.jpg"
    assert out.size < artifact.size
    with Image.open(io.BytesIO(out.content)) as img:
        assert img.format == "JPEG"
        assert img.size == (400, 200)


def test_non_image_passes_through() -> None:
    doc = Artifact("blatt.pdf", b"%PDF-1.4", "application/pdf")
    assert JpegCompressor().compress(doc) is doc


def test_undecodable_image_raises_compression_error() -> None:
    broken = Artifact("kaputt.png", b"not really a png", "image/png")
    with pytest.raises(CompressionError):
        JpegCompressor().compress(broken)


def test_quality_is_clamped() -> None:
    assert JpegCompressor(quality=200).quality == 95
    assert JpegCompressor(quality=0).quality == 1


def test_ahash_of_split_image() -> None:
    # Left half black, right half white: each 8px row hashes to 00001111.
    assert image_ahash(image_artifact(split=True)) == "0f" * 8


def test_ahash_of_uniform_image_is_all_zero() -> None:
    assert image_ahash(image_artifact()) == "0" * 16


def test_ahash_without_image() -> None:
    assert image_ahash(None) == NO_IMAGE
    assert image_ahash(Artifact("a.pdf", b"%PDF", "application/pdf")) == NO_IMAGE
    assert image_ahash(Artifact("a.png", b"garbage", "image/png")) == NO_IMAGE


def test_text_hash_ignores_case_whitespace_and_punctuation() -> None:
    assert normalize_text("  Rechne:\n2 + 3 = ?  ") == " rechne 2  3   "
    assert text_hash("Rechne: 2+3") == text_hash("rechne   23")
    assert text_hash("Rechne: 2+3") != text_hash("Rechne: 2+4")
    assert len(text_hash("")) == 8


def test_text_hash_is_sha256_prefix() -> None:
    # SHA-256 of the empty string.
    assert text_hash(None) == "e3b0c442"
    assert text_hash("  ") == hashlib.sha256(b" ").hexdigest()[:8]


def test_worksheet_signature_format() -> None:
    sig = worksheet_signature(image_artifact(split=True), "Aufgabe 1")
    image_part, text_part = sig.split("-")
    assert image_part == "0f" * 8
    assert text_part == text_hash("aufgabe 1")
    assert worksheet_signature(None, "x").startswith(f"{NO_IMAGE}-")


def test_oversized_image_raises_compression_error(monkeypatch) -> None:
    # Anything above twice this many pixels is rejected as a decompression bomb.
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(CompressionError):
        JpegCompressor().compress(image_artifact(size=(64, 64)))


def test_oversized_image_hashes_as_no_image(monkeypatch) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    assert image_ahash(image_artifact(size=(64, 64))) == NO_IMAGE
