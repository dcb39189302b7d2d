# src/homework_dock/pipeline/artifacts.py

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class Artifact:
    """A captured file (photo, scan, document) on its way to the analyze endpoint."""

    name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return (self.content_type or "").lower().startswith("image/")

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> Artifact:
        p = Path(path).expanduser()
        if content_type is None:
            guessed, _ = mimetypes.guess_type(p.name)
            content_type = guessed or "application/octet-stream"
        return cls(name=p.name, content=p.read_bytes(), content_type=content_type)
