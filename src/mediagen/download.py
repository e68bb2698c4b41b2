from __future__ import annotations

import base64
import binascii
import itertools
import logging
import mimetypes
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import unquote, urlsplit

import click
import requests

from .errors import DownloadError
from .exif import EXIF_SUFFIXES, set_exif_data
from .options import is_local_file

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 64  # 64 KiB
TIMEOUT = (5.0, 60.0)  # (connect, read)
MAX_WORKERS = 4

# Content types that are never media, usually an error page
REJECTED_TYPES = ("text/", "application/json")

_path_lock = threading.Lock()


@dataclass
class DownloadReport:
    saved: List[Path] = field(default_factory=list)
    failed: List[DownloadError] = field(default_factory=list)
    sizes: Dict[Path, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return bool(self.saved) and not self.failed


# ------------------------------ Utilities ------------------------------

def _split_name_and_ext(filename: str) -> Tuple[str, str]:
    p = Path(filename)
    return p.stem, p.suffix  # suffix includes leading dot or empty string


def _unique_path(base: Path) -> Path:
    if not base.exists():
        return base
    stem, suffix = base.stem, base.suffix
    for i in itertools.count(1):
        candidate = base.with_name(f"{stem}-{i}{suffix}")
        if not candidate.exists():
            return candidate


def _reserve_path(base: Path) -> Path:
    """Pick a free path and create it empty, so parallel downloads never share a file."""
    with _path_lock:
        path = _unique_path(base)
        path.touch()
    return path


def _ext_from_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    mime = content_type.split(";")[0].strip().lower()
    if mime.startswith(REJECTED_TYPES):
        return ""
    return mimetypes.guess_extension(mime) or ""


def _timestamp() -> str:
    return str(int(time.time() * 1000))


def name_from_url(url: str) -> Tuple[str, str]:
    """(stem, suffix) of the last path segment, decoded; empty stem when there is none."""
    if url.startswith("data:"):
        return "", ""
    raw_name = Path(unquote(urlsplit(url).path)).name
    return _split_name_and_ext(raw_name) if raw_name else ("", "")


def decode_data_uri(uri: str) -> Tuple[bytes, str]:
    """Return (payload, mime type) of a data: URI."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:"):
        raise ValueError("malformed data URI")
    mime = header[5:].split(";")[0] or "application/octet-stream"
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True), mime
        except binascii.Error as e:
            raise ValueError(f"invalid base64 payload: {e}") from e
    return unquote(payload).encode(), mime


def encode_data_uri(path: Path | str) -> str:
    p = Path(path).expanduser()
    mime = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
    return f"data:{mime};base64,{base64.b64encode(p.read_bytes()).decode()}"


def encode_local(value: Optional[str]) -> Optional[str]:
    """Inline a local file as a data URI; URLs and other values pass through."""
    return encode_data_uri(value) if is_local_file(value) else value


# ------------------------------ Downloads ------------------------------

class _Downloader:

    def __init__(self, savedir: Path, name_prefix: Optional[str], fallback_stem: str, smoke: bool,
                 exif: Optional[Mapping]):
        self.savedir = savedir
        self.name_prefix = name_prefix
        self.fallback_stem = fallback_stem
        self.smoke = smoke
        self.exif = exif

    def _target(self, idx: int, stem: str, suffix: str) -> Path:
        stem = stem or f"{self.fallback_stem}_{_timestamp()}"
        out_name = f"{self.name_prefix}-{idx}-{stem}{suffix}" if self.name_prefix else f"{stem}{suffix}"
        return _reserve_path(self.savedir / out_name)

    def fetch(self, idx: int, url: str) -> Tuple[Path, int]:
        try:
            path, size = self._fetch(idx, url)
        except DownloadError:
            raise
        except requests.exceptions.RequestException as e:
            raise DownloadError(url, str(e)) from e
        except (OSError, ValueError) as e:
            raise DownloadError(url, str(e)) from e
        except Exception as e:
            # Catch-all to keep batch going
            raise DownloadError(url, f"unexpected error: {e!r}") from e

        if self.exif is not None and path.suffix.lower() in EXIF_SUFFIXES:
            try:
                ok = set_exif_data(path, self.exif)
            except Exception as e:
                logger.debug("EXIF error for %s: %r", path, e)
                ok = False
            if not ok:
                logger.warning("Failed to set EXIF for %s", path)
        return path, size

    @staticmethod
    def _write(filename: Path, chunks: Iterable[bytes]) -> int:
        """Write chunks to a reserved path; the file is removed again if anything fails."""
        size = 0
        try:
            with open(filename, "wb") as f:
                for chunk in chunks:
                    if chunk:  # filter out keep-alive chunks
                        f.write(chunk)
                        size += len(chunk)
        except BaseException:
            filename.unlink(missing_ok=True)
            raise
        return size

    def _fetch(self, idx: int, url: str) -> Tuple[Path, int]:
        stem, suffix = name_from_url(url)

        if url.startswith("data:"):
            content, mime = decode_data_uri(url)
            filename = self._target(idx, "", suffix or _ext_from_content_type(mime) or ".bin")
            return filename, self._write(filename, [content])

        if self.smoke:
            content = f"mock {self.fallback_stem} {stem or 'media'}".encode()
            filename = self._target(idx, stem, suffix or ".png")
            return filename, self._write(filename, [content])

        with requests.Session() as session:
            session.headers.update({"User-Agent": "mediagen/1.0"})
            resp = session.get(url, stream=True, timeout=TIMEOUT)
            try:
                resp.raise_for_status()
                ctype = resp.headers.get("Content-Type", "")
                if ctype.lower().startswith(REJECTED_TYPES):
                    raise DownloadError(url, f"unexpected Content-Type {ctype}")

                # If no suffix in URL, infer from content type
                if not suffix:
                    suffix = _ext_from_content_type(ctype) or ".bin"

                filename = self._target(idx, stem, suffix)
                size = self._write(filename, resp.iter_content(chunk_size=CHUNK_SIZE))
            finally:
                resp.close()
        return filename, size


def download_all(
        urls: Iterable[str],
        savedir: Path | str = "images",
        name_prefix: Optional[str] = None,
        fallback_stem: str = "media",
        smoke: bool = False,
        embed_exif: Optional[Mapping] = None,
        max_workers: int = MAX_WORKERS,
) -> DownloadReport:
    """
    Download media URLs into savedir, in parallel.

    If name_prefix is provided, filenames become
      "<name_prefix>-<N>-<original_stem><ext>" where N starts at 1.
    URLs without a usable path segment (and data: URIs) are named
      "<fallback_stem>_<timestamp><ext>".

    Every URL is fetched independently: a failure is recorded in
    ``report.failed`` and does not stop the others. ``report.saved`` keeps the
    input order. Existing files are never overwritten.

    In smoke mode nothing is fetched; mock bytes are written instead.
    """
    urls = list(urls)
    savedir = Path(savedir)
    savedir.mkdir(parents=True, exist_ok=True)
    report = DownloadReport()
    if not urls:
        return report

    worker = _Downloader(savedir, name_prefix, fallback_stem, smoke, embed_exif)
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(urls)))) as pool:
        futures = [pool.submit(worker.fetch, idx, url) for idx, url in enumerate(urls, start=1)]

    for url, future in zip(urls, futures):
        try:
            path, size = future.result()
        except DownloadError as e:
            logger.error("%s", e)
            report.failed.append(e)
            continue
        report.saved.append(path)
        report.sizes[path] = size
        click.echo(f"Saved {path}")

    if report.failed:
        click.echo(f"{len(report.saved)} of {len(urls)} file(s) saved, {len(report.failed)} failed")
    return report
