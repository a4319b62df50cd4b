#!/usr/bin/env python3
"""
txread — Read plain-text novels from a WebDAV share in the terminal.

Reading position is saved on every chapter change and synced to the share
when the reader exits, so another machine can pick up where you left off.

Quick start:
  1. txread config --url https://dav.example.com/books --username me
  2. txread upload --target ./novels
  3. txread list
  4. txread use 1
  5. txread look
"""

import argparse
import getpass
import json
import logging
import posixpath
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

IGNORED_CACHE_FILES = {"current.json", ".DS_Store"}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="txread",
        description="Terminal reader for plain-text novels stored on WebDAV",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  txread config --url https://example.com/webdav --username me
  txread upload --path /books --target ./local_books
  txread list
  txread use novel.txt
  txread review
  txread look
  txread look "第一章"
  txread settings --set-chapters-per-page 30
  txread settings --bind nextChapter=2,down,]
  txread settings --upload
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to ~/.txread/txread.log")
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("config", help="Store WebDAV connection details")
    p.add_argument("-l", "--url", help="WebDAV server URL")
    p.add_argument("-u", "--username", help="User name")
    p.add_argument("-p", "--password", help="Password (prompted if omitted)")
    p.set_defaults(func=cmd_config)

    p = sub.add_parser("upload", help="Upload a .txt file or a directory of them")
    p.add_argument("-t", "--target", type=Path, required=True, help="Local file or directory")
    p.add_argument("-p", "--path", default="/", help="Remote directory (default: /)")
    p.set_defaults(func=cmd_upload)

    p = sub.add_parser("list", help="List books on the share and in the local cache")
    p.add_argument("-p", "--path", default="/", help="Remote directory (default: /)")
    p.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    p.add_argument("--page-size", type=int, default=10, help="Books per page (default: 10)")
    p.add_argument("--no-upload", action="store_true", help="Do not upload books that only exist locally")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("use", help="Select the book to read")
    p.add_argument("book", help="File name or ID from 'txread list'")
    p.set_defaults(func=cmd_use)

    p = sub.add_parser("review", help="Show a book's chapter index")
    p.add_argument("book", nargs="?", help="File name or ID (default: the selected book)")
    p.add_argument("-p", "--page", type=int, default=1, help="Page number (default: 1)")
    p.add_argument("-s", "--page-size", type=int, default=50, help="Chapters per page (default: 50)")
    p.set_defaults(func=cmd_review)

    p = sub.add_parser("look", help="Start reading the selected book")
    p.add_argument("chapter", nargs="?", help="Chapter title or number (default: last position)")
    p.set_defaults(func=cmd_look)

    p = sub.add_parser("delete", help="Delete a book locally and/or from the share")
    p.add_argument("book", help="File name or ID from 'txread list'")
    p.add_argument("-p", "--path", default="/", help="Remote directory (default: /)")
    scope = p.add_mutually_exclusive_group()
    scope.add_argument("--local-only", action="store_true", help="Only delete the cached copy")
    scope.add_argument("--remote-only", action="store_true", help="Only delete the remote file")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("settings", help="Show or change reader settings")
    p.add_argument("--show", action="store_true", help="Show current settings (default)")
    p.add_argument("-s", "--sync", action="store_true", help="Download settings from WebDAV")
    p.add_argument("-u", "--upload", action="store_true", help="Upload settings to WebDAV")
    p.add_argument("--set-chapters-per-page", type=int, metavar="N", help="Chapters per list page (5-100)")
    p.add_argument("--set-lines-per-page", type=int, metavar="N", help="Lines per page (10-100)")
    p.add_argument("--set-font-size", type=int, metavar="N", help="Font size (8-32)")
    p.add_argument("--set-clear-terminal", choices=["true", "false"], help="Clear the screen on chapter change")
    p.add_argument(
        "--bind", action="append", default=[], metavar="ACTION=KEYS",
        help="Replace the keys for an action, e.g. nextChapter=2,down,]",
    )
    p.add_argument("--reset-keys", action="store_true", help="Restore the default key bindings")
    p.set_defaults(func=cmd_settings)

    p = sub.add_parser("help", help="Show commands and reader shortcuts")
    p.set_defaults(func=lambda args: print_help(parser))

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    """Log to a file; the reader owns the terminal while it runs."""
    from settings import log_file

    path = log_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(path),
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def fail(message: str) -> None:
    print(f"ERROR: {message}")
    sys.exit(1)


def require_store():
    from settings import load_webdav_config
    from webdav_client import WebDAVStore

    config = load_webdav_config()
    if config is None:
        fail('WebDAV is not configured. Run "txread config" first.')
    return WebDAVStore(config)


# ---- library helpers ----

@dataclass
class LibraryEntry:
    name: str
    path: str
    size: int
    last_modified: datetime | None
    local_only: bool = False


def _sort_key(entry: LibraryEntry) -> float:
    return entry.last_modified.timestamp() if entry.last_modified else 0.0


def local_books() -> list[Path]:
    from settings import cache_dir

    directory = cache_dir()
    if not directory.exists():
        return []
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.name not in IGNORED_CACHE_FILES
    )


def build_library(store, remote_path: str = "/") -> list[LibraryEntry]:
    """Remote books plus local-only cached books, newest first."""
    entries = [
        LibraryEntry(f.name, f.path, f.size, f.last_modified)
        for f in store.list_books(remote_path)
    ]
    remote_names = {e.name for e in entries}
    for path in local_books():
        if path.name in remote_names:
            continue
        stat = path.stat()
        entries.append(LibraryEntry(
            name=path.name,
            path=str(path),
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            local_only=True,
        ))
    entries.sort(key=_sort_key, reverse=True)
    return entries


def resolve_entry(entries: list[LibraryEntry], ident: str) -> LibraryEntry | None:
    """Look up a book by 1-based ID or exact file name."""
    if ident.isdigit():
        index = int(ident) - 1
        return entries[index] if 0 <= index < len(entries) else None
    return next((e for e in entries if e.name == ident), None)


def fetch_book(store, entry: LibraryEntry) -> Path:
    """Make sure the cache holds an up-to-date copy; returns its path."""
    from settings import cache_dir

    if entry.local_only:
        return Path(entry.path)
    local_path = cache_dir() / entry.name
    if local_path.exists() and entry.last_modified:
        local_mtime = datetime.fromtimestamp(local_path.stat().st_mtime, tz=timezone.utc)
        if local_mtime >= entry.last_modified:
            print(f"Local copy is up to date: {entry.name}")
            return local_path
    print(f"Downloading: {entry.name}")
    store.download(entry.path, local_path)
    return local_path


def current_selection() -> dict | None:
    from settings import cache_dir

    path = cache_dir() / "current.json"
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def save_selection(entry: LibraryEntry, local_path: Path) -> None:
    from settings import cache_dir

    path = cache_dir() / "current.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    info = {
        "filename": entry.name,
        "filePath": entry.path,
        "localFilePath": str(local_path),
        "lastUsed": datetime.now(timezone.utc).isoformat(),
    }
    path.write_text(json.dumps(info, indent=2, ensure_ascii=False), encoding="utf-8")


def sync_progress(store) -> None:
    """Merge remote and local progress, newest per book wins, and write both."""
    from progress import load_positions, merge_positions, save_positions
    from settings import progress_file

    merged = merge_positions(load_positions(progress_file()), store.fetch_progress())
    save_positions(merged, progress_file())
    store.sync_progress(merged)


def print_page(lines: list[str], page: int, page_size: int) -> None:
    total_pages = max(1, -(-len(lines) // page_size))
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    for line in lines[start:start + page_size]:
        print(line)
    print(f"\nPage {page}/{total_pages}")


# ---- commands ----

def cmd_config(args) -> None:
    from settings import WebDAVConfig, save_webdav_config
    from webdav_client import WebDAVError, WebDAVStore

    url = args.url or input("WebDAV URL: ").strip()
    username = args.username or input("Username: ").strip()
    password = args.password or getpass.getpass("Password: ")
    if not url or not username or not password:
        fail("URL, username and password are all required.")

    config = WebDAVConfig(url=url, username=username, password=password)
    env_path = save_webdav_config(config)
    print(f"Saved WebDAV settings to {env_path}")

    print("Checking connection...")
    try:
        WebDAVStore(config).list("/")
    except WebDAVError as e:
        print(f"WARNING: connection check failed: {e}")
        return
    print("Connection OK.")


def cmd_upload(args) -> None:
    from webdav_client import WebDAVError

    store = require_store()
    target: Path = args.target
    if target.is_dir():
        files = sorted(p for p in target.iterdir() if p.is_file() and p.suffix.lower() == ".txt")
    elif target.is_file():
        files = [target]
    else:
        fail(f"Not found: {target}")
    if not files:
        fail(f"No .txt files in {target}")

    failed = 0
    for path in files:
        remote = posixpath.join(args.path, path.name)
        try:
            store.upload(path, remote)
            print(f"  ✓ {path.name} -> {remote}")
        except WebDAVError as e:
            failed += 1
            print(f"  ✗ {path.name}: {e}")
    print(f"\nUploaded {len(files) - failed}/{len(files)} files.")
    if failed:
        sys.exit(1)


def cmd_list(args) -> None:
    from progress import load_positions
    from settings import progress_file
    from webdav_client import WebDAVError

    store = require_store()
    print(f"Fetching {args.path} ...")
    try:
        entries = build_library(store, args.path)
    except WebDAVError as e:
        fail(f"Could not list files: {e}")

    local_only = [e for e in entries if e.local_only]
    print(f"Remote files: {len(entries) - len(local_only)}  Local-only files: {len(local_only)}")

    if local_only and not args.no_upload:
        print("\nUploading local-only files...")
        for entry in local_only:
            try:
                store.upload(Path(entry.path), posixpath.join(args.path, entry.name))
                print(f"  ✓ {entry.name}")
            except WebDAVError as e:
                print(f"  ✗ {entry.name}: {e}")
        entries = build_library(store, args.path)

    if not entries:
        print("No files found.")
        return

    positions = {p.file_name: p for p in load_positions(progress_file())}
    lines = []
    for i, entry in enumerate(entries, start=1):
        modified = entry.last_modified.astimezone().strftime("%Y-%m-%d %H:%M") if entry.last_modified else "-"
        position = positions.get(entry.name)
        marker = f"  [{position.chapter_title}]" if position else ""
        local = "  (local only)" if entry.local_only else ""
        lines.append(f"  {i:3d}. {entry.name:<40} {entry.size / 1024:>9.1f} KB  {modified}{marker}{local}")
    print(f"\nFiles ({len(entries)}):")
    print("-" * 90)
    print_page(lines, args.page, args.page_size)
    print('Use "txread use <name or ID>" to pick a book.')


def cmd_use(args) -> None:
    from progress import get_position
    from settings import progress_file
    from webdav_client import WebDAVError

    store = require_store()
    print("Syncing reading progress...")
    try:
        sync_progress(store)
        print("Reading progress synced.")
    except WebDAVError as e:
        print(f"WARNING: progress sync failed, using local progress ({e})")

    try:
        entries = build_library(store, "/")
    except WebDAVError as e:
        fail(f"Could not list files: {e}")
    entry = resolve_entry(entries, args.book)
    if entry is None:
        fail(f"File not found: {args.book}")

    try:
        local_path = fetch_book(store, entry)
    except WebDAVError as e:
        fail(f"Download failed: {e}")
    save_selection(entry, local_path)
    print(f"Selected: {entry.name}")

    position = get_position(entry.name, progress_file())
    if position:
        print(f"Last position: chapter {position.chapter_index + 1} {position.chapter_title}")
        print(f"Last read:     {position.timestamp.astimezone():%Y-%m-%d %H:%M}")
    else:
        print("Not started yet.")
    print('Run "txread look" to start reading.')


def cmd_review(args) -> None:
    from parsers import parse_file
    from webdav_client import WebDAVError

    if args.book:
        store = require_store()
        try:
            entry = resolve_entry(build_library(store, "/"), args.book)
            if entry is None:
                fail(f"File not found: {args.book}")
            local_path = fetch_book(store, entry)
        except WebDAVError as e:
            fail(str(e))
        name = entry.name
    else:
        selection = current_selection()
        if selection is None:
            fail('Give a file name or ID, or select a book with "txread use" first.')
        name, local_path = selection["filename"], Path(selection["localFilePath"])

    chapters = parse_file(local_path)
    lines = [f"  {i:4d}. {ch.title}" for i, ch in enumerate(chapters, start=1)]
    print(f"\nChapters of {name}:\n")
    print_page(lines, args.page, args.page_size)
    print(f"\n{len(chapters)} chapters.")
    print('Use "txread look <chapter name or number>" to start reading there.')


def _start_index(chapters, chapter_arg: str | None, file_name: str) -> int:
    from parsers import find_chapter
    from progress import get_position
    from settings import progress_file

    if chapter_arg:
        if chapter_arg.isdigit():
            index = int(chapter_arg) - 1
            if not 0 <= index < len(chapters):
                fail(f"Invalid chapter number: {chapter_arg} (1-{len(chapters)})")
            return index
        index = find_chapter(chapters, chapter_arg)
        if index is None:
            fail(f"No chapter matches: {chapter_arg}")
        return index

    position = get_position(file_name, progress_file())
    if position is None:
        print("Starting from the beginning.")
        return 0
    index = position.chapter_index
    if not (0 <= index < len(chapters) and chapters[index].title == position.chapter_title):
        # Older progress files only carry the title
        index = find_chapter(chapters, position.chapter_title) or 0
    print(f"Resuming at: {chapters[index].title}")
    return index


def cmd_look(args) -> None:
    from parsers import parse_file
    from progress import update_position
    from reading_session import ReadingSession, RenderOptions
    from settings import load_app_config, load_webdav_config, progress_file
    from terminal import TerminalError
    from webdav_client import WebDAVError, WebDAVStore

    selection = current_selection()
    if selection is None:
        fail('Select a book with "txread use" first.')
    file_name = selection["filename"]
    local_path = Path(selection["localFilePath"])
    if not local_path.exists():
        fail('Cached copy is missing. Run "txread use" again.')

    chapters = parse_file(local_path)
    start = _start_index(chapters, args.chapter, file_name)
    reading = load_app_config().reading

    def persist(position) -> bool:
        update_position(position, progress_file())
        return True

    session = ReadingSession(
        document_id=file_name,
        chapters=chapters,
        start_chapter_index=start,
        persist_position=persist,
        key_bindings=reading.bindings(),
        render_options=RenderOptions(
            clear_on_navigate=reading.clear_terminal_on_page_change,
            chapters_per_page=reading.chapters_per_page,
        ),
    )
    try:
        position = session.start()
    except TerminalError as e:
        fail(str(e))

    print(f"Reading progress saved: chapter {position.chapter_index + 1} {position.chapter_title}")
    config = load_webdav_config()
    if config is None:
        return
    try:
        sync_progress(WebDAVStore(config))
        print("Reading progress synced to WebDAV.")
    except WebDAVError as e:
        logging.getLogger(__name__).warning("Progress sync failed: %s", e)
        print(f"WARNING: could not sync progress to WebDAV: {e}")


def cmd_delete(args) -> None:
    from settings import cache_dir
    from webdav_client import WebDAVError

    if args.local_only:
        entries = [
            LibraryEntry(p.name, str(p), p.stat().st_size, None, local_only=True)
            for p in local_books()
        ]
        store = None
    else:
        store = require_store()
        try:
            entries = build_library(store, args.path)
        except WebDAVError as e:
            fail(f"Could not list files: {e}")

    entry = resolve_entry(entries, args.book)
    if entry is None:
        fail(f"File not found: {args.book}")

    if not args.remote_only:
        local_path = cache_dir() / entry.name
        if local_path.exists():
            local_path.unlink()
            print(f"Deleted local copy: {local_path}")
        selection = current_selection()
        if selection and selection.get("filename") == entry.name:
            (cache_dir() / "current.json").unlink()

    if not args.local_only and not entry.local_only:
        try:
            store.delete(entry.path)
        except WebDAVError as e:
            fail(f"Could not delete remote file: {e}")
        print(f"Deleted remote file: {entry.path}")


def _apply_bindings(reading, bindings: list[str]) -> None:
    from keybindings import Action

    for binding in bindings:
        name, sep, keys = binding.partition("=")
        name = name.strip()
        try:
            Action(name)
        except ValueError:
            valid = ", ".join(a.value for a in Action)
            fail(f"Unknown action '{name}'. Valid actions: {valid}")
        # Split on commas but keep a lone "," usable as a key
        parsed = [k.strip() for k in keys.split(",") if k.strip()] if keys.strip() != "," else [","]
        if not sep or not parsed:
            fail(f"Expected ACTION=KEY[,KEY...], got '{binding}'")
        reading.key_bindings[name] = parsed
        print(f"Keys for {name}: {', '.join(parsed)}")


def _show_settings(config) -> None:
    from keybindings import ACTION_LABELS, ACTION_PRIORITY

    reading = config.reading
    bindings = reading.bindings()
    print("\nReading settings:\n")
    print(f"  Chapters per page:       {reading.chapters_per_page}")
    print(f"  Lines per page:          {reading.lines_per_page}")
    print(f"  Font size:               {reading.font_size}")
    print(f"  Clear screen on change:  {'yes' if reading.clear_terminal_on_page_change else 'no'}")
    print("\nKey bindings:\n")
    for action in ACTION_PRIORITY:
        print(f"  {action.value:<16} {', '.join(bindings.keys_for(action)):<20} {ACTION_LABELS[action]}")
    if config.last_sync_time:
        print(f"\nLast synced: {config.last_sync_time.astimezone():%Y-%m-%d %H:%M}")
    else:
        print("\nSettings have not been synced yet.")


def cmd_settings(args) -> None:
    from settings import AppConfig, load_app_config, save_app_config, validate_setting
    from webdav_client import WebDAVError

    config = load_app_config()
    changed = False

    if args.sync:
        store = require_store()
        remote = store.fetch_app_config()
        if remote is None:
            print("No settings stored on WebDAV yet.")
        else:
            config = AppConfig.from_dict(remote)
            config.last_sync_time = datetime.now(timezone.utc)
            changed = True
            print("Downloaded settings from WebDAV.")

    for option, name in (
        ("set_chapters_per_page", "chapters_per_page"),
        ("set_lines_per_page", "lines_per_page"),
        ("set_font_size", "font_size"),
    ):
        value = getattr(args, option)
        if value is None:
            continue
        try:
            setattr(config.reading, name, validate_setting(name, value))
        except ValueError as e:
            fail(str(e))
        changed = True
        print(f"Set {name.replace('_', ' ')} to {value}")

    if args.set_clear_terminal is not None:
        config.reading.clear_terminal_on_page_change = args.set_clear_terminal == "true"
        changed = True
        print(f"Set clear screen on change to {args.set_clear_terminal}")

    if args.reset_keys:
        config.reading.key_bindings = {}
        changed = True
        print("Key bindings reset to defaults.")
    if args.bind:
        _apply_bindings(config.reading, args.bind)
        changed = True

    if args.upload:
        store = require_store()
        config.last_sync_time = datetime.now(timezone.utc)
        try:
            store.sync_app_config(config.to_dict())
        except WebDAVError as e:
            fail(f"Could not upload settings: {e}")
        changed = True
        print("Uploaded settings to WebDAV.")

    if changed:
        save_app_config(config)
    else:
        _show_settings(config)


def print_help(parser: argparse.ArgumentParser) -> None:
    from keybindings import ACTION_LABELS, ACTION_PRIORITY
    from reading_session import JUMP_PREFIX
    from settings import load_app_config

    parser.print_help()
    bindings = load_app_config().reading.bindings()
    print("\nReader shortcuts:")
    for action in ACTION_PRIORITY:
        print(f"  {bindings.describe(action):<16} {ACTION_LABELS[action]}")
    print(f"\nIn the chapter list, type a number and Enter to find its page, or {JUMP_PREFIX}<number> to open it.")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
