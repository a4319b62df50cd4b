"""parsers/base.py — Shared text loading helpers."""

from pathlib import Path

# Tried in order; GB18030 covers the GBK/GB2312 files most Chinese novels ship as.
TEXT_ENCODINGS = ("utf-8-sig", "gb18030")


def decode_text(data: bytes) -> str:
    """Decode raw document bytes, falling back through TEXT_ENCODINGS."""
    for encoding in TEXT_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


def read_text_file(file_path: Path) -> str:
    """Read a plain-text document from disk."""
    return decode_text(Path(file_path).read_bytes())
