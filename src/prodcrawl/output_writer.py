"""Output writer for accepted product page captures."""

import html
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from prodcrawl.constants import (
    CAPTURE_FILE_SUFFIX,
    MIN_CONTENT_BYTES,
    PROVENANCE_META_NAME,
    SEQUENCE_NUMBER_WIDTH,
)
from prodcrawl.document import Document

logger = logging.getLogger(__name__)

_HEAD_OPEN_RE = re.compile(r"<head(\s[^>]*)?>", re.IGNORECASE)


@dataclass
class PersistResult:
    """Outcome of persisting one capture."""
    accepted: bool
    path: Optional[Path] = None
    size: int = 0


def provenance_marker(url: str) -> str:
    """Meta tag recording the URL a capture was fetched from."""
    return f'<meta name="{PROVENANCE_META_NAME}" content="{html.escape(url, quote=True)}">'


def annotate_with_provenance(content: str, url: str) -> str:
    """Insert the provenance marker right after the opening <head> tag.

    Documents without a head get the marker prepended instead.
    """
    marker = provenance_marker(url)
    match = _HEAD_OPEN_RE.search(content)
    if match is None:
        return f"{marker}\n{content}"
    return f"{content[:match.end()]}\n  {marker}{content[match.end():]}"


def capture_filename(sequence_number: int) -> str:
    """Zero-padded file name, so lexicographic order equals numeric order."""
    return f"{sequence_number:0{SEQUENCE_NUMBER_WIDTH}d}{CAPTURE_FILE_SUFFIX}"


class OutputWriter:
    """Writes product page captures for one task.

    Example structure:
        output/
        └── example.com/
            ├── 0000000.txt
            ├── 0000001.txt
            └── sitemap.xml
    """

    def __init__(self, output_dir: str, min_content_bytes: int = MIN_CONTENT_BYTES):
        """Initialize output writer.

        Args:
            output_dir: Directory captures are written to
            min_content_bytes: Captures smaller than this are deleted
        """
        self.output_dir = Path(output_dir)
        self.min_content_bytes = min_content_bytes

    def persist(self, document: Document, url: str, sequence_number: int) -> PersistResult:
        """Write a capture and apply the minimum size filter.

        The file is always written first; if it turns out smaller than
        ``min_content_bytes`` it is deleted and the capture is rejected,
        even though the page matched the classifier.

        Args:
            document: The fetched document
            url: Original URL, embedded as provenance
            sequence_number: Unique number encoded in the file name

        Returns:
            PersistResult with accepted=False for undersized captures

        Raises:
            FileExistsError: If a capture with this number already exists
            OSError: If the capture cannot be written
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / capture_filename(sequence_number)

        # Never overwrite an earlier capture
        with open(path, "x", encoding="utf-8") as f:
            f.write(annotate_with_provenance(document.html, url))
        size = path.stat().st_size

        if size < self.min_content_bytes:
            path.unlink()
            logger.info(
                f"Rejected undersized capture ({size} < {self.min_content_bytes} bytes): {url}"
            )
            return PersistResult(accepted=False, size=size)

        logger.debug(f"Wrote capture {path.name} ({size} bytes) for {url}")
        return PersistResult(accepted=True, path=path, size=size)

    def discard(self, path: Path) -> None:
        """Delete a capture whose acceptance was not counted."""
        try:
            path.unlink()
            logger.info(f"Discarded capture {path.name} (accepted cap reached)")
        except FileNotFoundError:
            pass
