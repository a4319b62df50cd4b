"""parsers/ — Plain-text novel loading and chapter segmentation."""

from pathlib import Path

from models import Chapter
from parsers.base import read_text_file
from parsers.text_parser import (
    WHOLE_DOCUMENT_TITLE,
    find_chapter,
    find_chapter_position,
    get_content_at_position,
    paginate_text,
    search_keywords,
    segment,
)

SUPPORTED_EXTENSIONS = {".txt"}

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "WHOLE_DOCUMENT_TITLE",
    "find_chapter",
    "find_chapter_position",
    "get_content_at_position",
    "paginate_text",
    "parse_file",
    "read_text_file",
    "search_keywords",
    "segment",
]


def parse_file(file_path: Path) -> list[Chapter]:
    """Load a document from disk and split it into chapters."""
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()

    if suffix not in SUPPORTED_EXTENSIONS:
        raise ValueError(
            f"Unsupported file format: '{suffix}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )
    return segment(read_text_file(file_path))
