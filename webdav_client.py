"""webdav_client.py — Remote book and progress storage on a WebDAV share."""

from __future__ import annotations

import json
import logging
import posixpath
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from urllib.parse import quote, unquote, urlparse

import requests
from tqdm import tqdm

from models import ReadingPosition
from progress import PROGRESS_FILE_NAME, positions_from_json, positions_to_json
from settings import REMOTE_CONFIG_FILE_NAME, WebDAVConfig

logger = logging.getLogger(__name__)

DAV_NS = "DAV:"
CHUNK_SIZE = 64 * 1024

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:displayname/><d:getcontentlength/><d:getlastmodified/><d:resourcetype/>"
    "</d:prop></d:propfind>"
)

HIDDEN_FILES = {PROGRESS_FILE_NAME, REMOTE_CONFIG_FILE_NAME}


class WebDAVError(RuntimeError):
    """A WebDAV request failed or returned a non-success status."""


@dataclass
class RemoteFile:
    name: str
    path: str
    size: int
    last_modified: datetime | None
    is_dir: bool = False


def _normalize(path: str) -> str:
    path = "/" + path.strip("/")
    return posixpath.normpath(path) if path != "/" else "/"


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable getlastmodified value %r", value)
        return None


def parse_propfind(xml_body: bytes, base_path: str = "") -> list[RemoteFile]:
    """
    Parse a PROPFIND multistatus body into RemoteFile entries.
    Hrefs are made relative to base_path (the URL path of the share root).
    """
    root = ET.fromstring(xml_body)
    entries = []
    base_path = base_path.rstrip("/")
    for response in root.findall(f"{{{DAV_NS}}}response"):
        href = response.findtext(f"{{{DAV_NS}}}href", default="")
        href_path = unquote(urlparse(href).path)
        if base_path and href_path.startswith(base_path):
            href_path = href_path[len(base_path):]
        prop = response.find(f"{{{DAV_NS}}}propstat/{{{DAV_NS}}}prop")
        if prop is None:
            continue
        resource_type = prop.find(f"{{{DAV_NS}}}resourcetype")
        is_dir = resource_type is not None and resource_type.find(f"{{{DAV_NS}}}collection") is not None
        path = _normalize(href_path)
        name = prop.findtext(f"{{{DAV_NS}}}displayname") or posixpath.basename(path)
        size = prop.findtext(f"{{{DAV_NS}}}getcontentlength")
        entries.append(RemoteFile(
            name=name,
            path=path,
            size=int(size) if size and size.isdigit() else 0,
            last_modified=_parse_http_date(prop.findtext(f"{{{DAV_NS}}}getlastmodified")),
            is_dir=is_dir,
        ))
    return entries


class WebDAVStore:
    """Thin `list/get/put/delete` wrapper around a WebDAV share."""

    def __init__(self, config: WebDAVConfig, session: requests.Session | None = None, timeout: float = 30):
        self.base_url = config.url.rstrip("/")
        self._base_path = unquote(urlparse(self.base_url).path)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (config.username, config.password)

    def _url(self, path: str) -> str:
        return self.base_url + quote(_normalize(path))

    def _request(self, method: str, path: str, ok=(200, 201, 204, 207), **kwargs) -> requests.Response:
        url = self._url(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise WebDAVError(f"{method} {path} failed: {e}") from e
        if response.status_code not in ok:
            raise WebDAVError(f"{method} {path} returned HTTP {response.status_code}")
        return response

    def list(self, path: str = "/") -> list[RemoteFile]:
        response = self._request(
            "PROPFIND", path,
            data=PROPFIND_BODY.encode("utf-8"),
            headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
        )
        target = _normalize(path)
        return [entry for entry in parse_propfind(response.content, self._base_path) if entry.path != target]

    def list_books(self, path: str = "/") -> list[RemoteFile]:
        """Files under path, minus txread's own progress/config blobs."""
        return [
            entry for entry in self.list(path)
            if not entry.is_dir and entry.name not in HIDDEN_FILES
        ]

    def exists(self, path: str) -> bool:
        try:
            self._request("PROPFIND", path, headers={"Depth": "0"})
        except WebDAVError:
            return False
        return True

    def get(self, path: str) -> bytes:
        return self._request("GET", path, ok=(200,)).content

    def put(self, path: str, data: bytes) -> None:
        self._request("PUT", path, ok=(200, 201, 204), data=data)

    def delete(self, path: str) -> None:
        self._request("DELETE", path, ok=(200, 204))

    def ensure_directory(self, path: str) -> None:
        """Create every missing collection along path."""
        current = ""
        for part in _normalize(path).strip("/").split("/"):
            if not part:
                continue
            current += "/" + part
            # 405 means the collection already exists
            self._request("MKCOL", current, ok=(200, 201, 405))

    def download(self, path: str, dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        response = self._request("GET", path, ok=(200,), stream=True)
        total = int(response.headers.get("Content-Length", 0)) or None
        with open(dest, "wb") as f, tqdm(
            total=total, unit="B", unit_scale=True, desc=f"  {posixpath.basename(path)[:40]}"
        ) as pbar:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                f.write(chunk)
                pbar.update(len(chunk))
        return dest

    def upload(self, local_path: Path, remote_path: str) -> None:
        self.ensure_directory(posixpath.dirname(_normalize(remote_path)))
        size = local_path.stat().st_size

        def _chunks(pbar):
            with open(local_path, "rb") as f:
                while True:
                    chunk = f.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    pbar.update(len(chunk))
                    yield chunk

        with tqdm(total=size, unit="B", unit_scale=True, desc=f"  {local_path.name[:40]}") as pbar:
            self._request(
                "PUT", remote_path, ok=(200, 201, 204),
                data=_chunks(pbar), headers={"Content-Length": str(size)},
            )

    def fetch_progress(self) -> list[ReadingPosition]:
        """Remote reading positions; a missing or corrupt file reads as empty."""
        try:
            return positions_from_json(self.get(PROGRESS_FILE_NAME))
        except WebDAVError as e:
            logger.info("No remote progress file: %s", e)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Remote progress file is unreadable: %s", e)
        return []

    def sync_progress(self, positions: list[ReadingPosition]) -> None:
        self.put(PROGRESS_FILE_NAME, positions_to_json(positions))

    def fetch_app_config(self) -> dict | None:
        try:
            return json.loads(self.get(REMOTE_CONFIG_FILE_NAME).decode("utf-8"))
        except WebDAVError as e:
            logger.info("No remote config file: %s", e)
        except ValueError as e:
            logger.warning("Remote config file is unreadable: %s", e)
        return None

    def sync_app_config(self, config: dict) -> None:
        self.put(REMOTE_CONFIG_FILE_NAME, json.dumps(config, indent=2, ensure_ascii=False).encode("utf-8"))
