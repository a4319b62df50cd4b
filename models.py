"""models.py — Shared data types for txread."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


@dataclass(frozen=True)
class Chapter:
    title: str          # Trimmed heading title, e.g. "开始"
    content: str        # Body text without the heading line
    start_offset: int   # Character offset into the source document
    end_offset: int


@dataclass
class ReadingPosition:
    file_name: str
    chapter_title: str
    chapter_index: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "fileName": self.file_name,
            "chapter": self.chapter_title,
            "chapterIndex": self.chapter_index,
            "lastReadTime": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReadingPosition":
        """Build from the JSON shape stored locally and on the WebDAV share."""
        raw_time = data.get("lastReadTime") or data.get("timestamp")
        if raw_time:
            # JS-style "Z" suffix is not accepted by fromisoformat before 3.11
            timestamp = datetime.fromisoformat(str(raw_time).replace("Z", "+00:00"))
        else:
            timestamp = datetime.fromtimestamp(0, tz=timezone.utc)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        index = data.get("chapterIndex")
        return cls(
            file_name=data["fileName"],
            chapter_title=data.get("chapter", ""),
            chapter_index=int(index) if index is not None else 0,
            timestamp=timestamp,
        )


class DisplayMode(Enum):
    READING = "reading"
    HELP = "help"
    CHAPTER_LIST = "chapter_list"
    PRIVACY = "privacy"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
