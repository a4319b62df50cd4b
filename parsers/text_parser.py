"""parsers/text_parser.py — Split plain-text novels into chapters."""

import re
from dataclasses import dataclass

from models import Chapter

WHOLE_DOCUMENT_TITLE = "Whole Document"

_NUMERALS = "一二三四五六七八九十百千万0-9"
# Title runs to end of line; the lookahead keeps a CRLF "\r" out of the match.
_TITLE = r"([^\r\n]+)(?=\r?$)"

# Priority order matters: the first pattern with any match is used for the
# whole document, even if a later one would find more headings.
HEADING_PATTERNS = [
    re.compile(rf"^第[{_NUMERALS}]+章[：:\s]?{_TITLE}", re.MULTILINE),
    re.compile(rf"^第[{_NUMERALS}]+节[：:\s]?{_TITLE}", re.MULTILINE),
    re.compile(rf"^Chapter\s*[0-9]+[：:\s]?{_TITLE}", re.MULTILINE | re.IGNORECASE),
    re.compile(rf"^[0-9]+\.\s?{_TITLE}", re.MULTILINE),
    re.compile(r"^【([^\r\n]+)】(?=\r?$)", re.MULTILINE),
]


@dataclass
class KeywordHits:
    keyword: str
    positions: list[int]


def _find_headings(document: str) -> list[re.Match]:
    for pattern in HEADING_PATTERNS:
        matches = list(pattern.finditer(document))
        if matches:
            return matches
    return []


def segment(document: str) -> list[Chapter]:
    """
    Split a document into chapters using the first heading pattern that matches.

    Headings sharing a trimmed title are folded into one chapter spanning from
    the first occurrence to the end of the last one, swallowing whatever lies
    in between. Chapters come out in first-appearance order of their titles.
    Falls back to a single chapter covering the whole document.
    """
    matches = _find_headings(document)
    if not matches:
        return [Chapter(
            title=WHOLE_DOCUMENT_TITLE,
            content=document,
            start_offset=0,
            end_offset=len(document),
        )]

    # title -> [start, end, index of first match]; dicts keep insertion order
    spans: dict[str, list[int]] = {}
    for i, match in enumerate(matches):
        title = (match.group(1) or match.group(0)).strip()
        end = matches[i + 1].start() if i + 1 < len(matches) else len(document)
        if title in spans:
            spans[title][1] = end
        else:
            spans[title] = [match.start(), end, i]

    chapters = []
    for title, (start, end, first_index) in spans.items():
        heading = matches[first_index].group(0)
        text = document[start:end]
        text = re.sub(f"^{re.escape(heading)}", "", text, count=1, flags=re.MULTILINE)
        chapters.append(Chapter(
            title=title,
            content=text.strip(),
            start_offset=start,
            end_offset=end,
        ))
    return chapters


def paginate_text(text: str, lines_per_page: int = 20) -> list[str]:
    """Split text into pages of at most lines_per_page lines."""
    if lines_per_page < 1:
        raise ValueError("lines_per_page must be at least 1")
    lines = text.split("\n")
    return [
        "\n".join(lines[i:i + lines_per_page])
        for i in range(0, len(lines), lines_per_page)
    ]


def find_chapter(chapters: list[Chapter], title: str) -> int | None:
    """Index of the first chapter whose title contains `title` or is contained in it."""
    for i, chapter in enumerate(chapters):
        if title in chapter.title or chapter.title in title:
            return i
    return None


def find_chapter_position(document: str, title: str) -> int | None:
    chapters = segment(document)
    index = find_chapter(chapters, title)
    return chapters[index].start_offset if index is not None else None


def get_content_at_position(document: str, position: int, length: int = 1000) -> str:
    if position >= len(document):
        return ""
    return document[position:min(position + length, len(document))]


def search_keywords(document: str, keywords: list[str]) -> list[KeywordHits]:
    """Every match offset per keyword, overlapping matches included."""
    results = []
    for keyword in keywords:
        if not keyword:
            continue
        positions = []
        index = document.find(keyword)
        while index != -1:
            positions.append(index)
            index = document.find(keyword, index + 1)
        if positions:
            results.append(KeywordHits(keyword=keyword, positions=positions))
    return results
