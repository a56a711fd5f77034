"""Plain-text file attachments."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = frozenset({"txt", "md", "json", "js", "ts", "py", "html", "css", "csv"})


class UnsupportedAttachmentError(ValueError):
    """The file can't be attached as text."""


@dataclass
class Attachment:
    """A file whose text is sent along with a message."""

    name: str
    content: str
    type: str = "text/plain"
    size: int = 0


def load_attachment(path: Path | str) -> Attachment:
    """Read a text file for attaching to the next message."""
    path = Path(path).expanduser()
    ext = path.suffix.lower().lstrip(".")
    if ext not in TEXT_EXTENSIONS:
        raise UnsupportedAttachmentError(f"Unsupported file format: {path.name}")
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise UnsupportedAttachmentError(f"Could not read {path.name}: {e}") from e

    mime, _ = mimetypes.guess_type(path.name)
    logger.debug("Attached %s (%d bytes)", path.name, len(raw))
    return Attachment(
        name=path.name,
        content=raw.decode("utf-8", errors="replace"),
        type=mime or "text/plain",
        size=len(raw),
    )
