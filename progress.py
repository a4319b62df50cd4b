"""progress.py — Reading position persistence and reconciliation."""

import json
import logging
import queue
import threading
import time
from pathlib import Path
from typing import Callable

from models import ReadingPosition

logger = logging.getLogger(__name__)

PROGRESS_FILE_NAME = ".txread_progress.json"


def merge_position(positions: list[ReadingPosition], candidate: ReadingPosition) -> bool:
    """
    Fold one position into a list in place, last write wins per file.
    On a timestamp tie the existing entry is kept. Returns True if the list changed.
    """
    for i, existing in enumerate(positions):
        if existing.file_name == candidate.file_name:
            if candidate.timestamp > existing.timestamp:
                positions[i] = candidate
                return True
            return False
    positions.append(candidate)
    return True


def merge_positions(local: list[ReadingPosition], remote: list[ReadingPosition]) -> list[ReadingPosition]:
    merged = list(local)
    for position in remote:
        merge_position(merged, position)
    return merged


def load_positions(path: Path) -> list[ReadingPosition]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return [ReadingPosition.from_dict(item) for item in data]
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Ignoring unreadable progress file %s: %s", path, e)
        return []


def save_positions(positions: list[ReadingPosition], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [p.to_dict() for p in positions]
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def update_position(position: ReadingPosition, path: Path) -> bool:
    """Merge one position into the progress file. Returns True if it was written."""
    positions = load_positions(path)
    if not merge_position(positions, position):
        return False
    save_positions(positions, path)
    return True


def get_position(file_name: str, path: Path) -> ReadingPosition | None:
    for position in load_positions(path):
        if position.file_name == file_name:
            return position
    return None


def positions_to_json(positions: list[ReadingPosition]) -> bytes:
    return json.dumps([p.to_dict() for p in positions], indent=2, ensure_ascii=False).encode("utf-8")


def positions_from_json(data: bytes) -> list[ReadingPosition]:
    return [ReadingPosition.from_dict(item) for item in json.loads(data.decode("utf-8"))]


class SaveWorker:
    """
    Background writer for reading positions.

    `submit()` never blocks on storage. Queued saves for the same file are
    coalesced so only the newest position is written; failures are logged.
    """

    def __init__(self, persist: Callable[[ReadingPosition], bool]):
        self._persist = persist
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def submit(self, position: ReadingPosition) -> None:
        self._ensure_started()
        self._queue.put(position)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every submitted save has been attempted."""
        if self._thread is None:
            return True
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: float | None = 5.0) -> bool:
        """Stop the worker after pending saves. Returns False if it is still writing."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return True
        self._queue.put(None)
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Save worker did not finish within %ss", timeout)
            return False
        return True

    def _ensure_started(self) -> None:
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="txread-save-worker", daemon=True
                )
                self._thread.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            batch = [item]
            # Drain whatever piled up while the last write was running
            while True:
                try:
                    batch.append(self._queue.get_nowait())
                except queue.Empty:
                    break

            stop = False
            latest: dict[str, ReadingPosition] = {}
            for position in batch:
                if position is None:
                    stop = True
                    continue
                current = latest.get(position.file_name)
                if current is None or position.timestamp >= current.timestamp:
                    latest[position.file_name] = position

            for position in latest.values():
                self._write(position)
            for _ in batch:
                self._queue.task_done()
            if stop:
                return

    def _write(self, position: ReadingPosition) -> None:
        try:
            ok = self._persist(position)
        except Exception as e:
            logger.warning(
                "Failed to save position for %s (chapter %d): %s",
                position.file_name, position.chapter_index, e,
            )
            return
        if ok is False:
            logger.warning(
                "Position for %s (chapter %d) was not saved",
                position.file_name, position.chapter_index,
            )
        else:
            logger.debug("Saved position %s -> chapter %d", position.file_name, position.chapter_index)
