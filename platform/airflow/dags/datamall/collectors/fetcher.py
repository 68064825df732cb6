"""
Downloads DataMall archives and extracts their CSV entries.

Usage:
    fetcher = Fetcher()
    try:
        csv_path = fetcher.download(url, csv_file_name="M11-coe_results.csv")
        ...
    finally:
        fetcher.cleanup()
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

import requests
from requests.exceptions import ChunkedEncodingError, ConnectionError, ReadTimeout
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from datamall import settings
from datamall.collectors.exceptions import ArchiveIntegrityError, DownloadError

logger = logging.getLogger(__name__)


class Fetcher:
    """
    Fetches a remote file and, when it is a ZIP archive, extracts it.

    Every file and directory the fetcher creates is recorded so a single
    cleanup() call removes them once the caller is done with the paths.
    """

    def __init__(
        self,
        download_dir: str | Path | None = None,
        session: requests.Session | None = None,
        timeout: int = 300,
    ) -> None:
        self.download_dir = Path(download_dir or settings.DOWNLOAD_DIR)
        self.timeout = timeout
        self._session = session or requests.Session()
        self._created: list[Path] = []
        self.logger = logging.getLogger("datamall_fetcher")

    def download(self, url: str, csv_file_name: str | None = None) -> Path:
        """
        Download `url` and return the local path of the file to parse.

        For a ZIP payload the entry named `csv_file_name` is returned (first
        file entry when no name is given). Any other payload is saved as
        `csv_file_name`, or the URL's base name.
        """
        payload = self._fetch(url)
        try:
            if zipfile.is_zipfile(payload):
                entries = self._extract(payload, url)
                return self._select_entry(entries, csv_file_name, url)

            target_dir = self._make_work_dir()
            target = target_dir / (csv_file_name or _filename_from_url(url))
            shutil.move(str(payload), target)
            return target
        finally:
            payload.unlink(missing_ok=True)

    def fetch_and_extract(self, url: str) -> dict[str, Path]:
        """Download a ZIP archive and map each entry's base name to its path."""
        payload = self._fetch(url)
        try:
            if not zipfile.is_zipfile(payload):
                raise ArchiveIntegrityError(
                    f"Payload from {url} is not a ZIP archive", found=[]
                )
            entries = self._extract(payload, url)
        finally:
            payload.unlink(missing_ok=True)
        return {PurePosixPath(name).name: path for name, path in entries.items()}

    def cleanup(self) -> None:
        for path in reversed(self._created):
            if path.is_dir():
                shutil.rmtree(path, ignore_errors=True)
            else:
                path.unlink(missing_ok=True)
        self._created.clear()

    # ------------------------------------------------------------------ #
    #  Download
    # ------------------------------------------------------------------ #

    def _fetch(self, url: str) -> Path:
        try:
            return self._download_to_tempfile(url)
        except DownloadError:
            raise
        except (requests.RequestException, OSError) as e:
            raise DownloadError(f"Failed to download {url}: {e}", url=url) from e

    @retry(
        retry=retry_if_exception_type((ChunkedEncodingError, ConnectionError, ReadTimeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2, max=60),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _download_to_tempfile(self, url: str) -> Path:
        """Download a URL to a temp file. Returns the file path."""
        self.logger.info("Downloading %s", url)
        resp = self._session.get(url, stream=True, timeout=self.timeout)
        if not 200 <= resp.status_code < 300:
            self.logger.error(
                "Download failed: %s %s for %s\nBody: %s",
                resp.status_code,
                resp.reason,
                url,
                resp.text[:500],
            )
            raise DownloadError(
                f"HTTP {resp.status_code} {resp.reason} for {url}",
                url=url,
                status_code=resp.status_code,
            )

        self.download_dir.mkdir(parents=True, exist_ok=True)
        tmp = tempfile.NamedTemporaryFile(
            prefix="datamall_", suffix=".download", dir=self.download_dir, delete=False
        )
        try:
            for chunk in resp.iter_content(chunk_size=8192):
                tmp.write(chunk)
            tmp.close()
            filepath = Path(tmp.name)
            self.logger.info(
                "Downloaded %s to %s (%.1f MB)",
                url,
                filepath,
                filepath.stat().st_size / (1024 * 1024),
            )
            return filepath
        except Exception:
            tmp.close()
            Path(tmp.name).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------ #
    #  Archive handling
    # ------------------------------------------------------------------ #

    def _make_work_dir(self) -> Path:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="datamall_", dir=self.download_dir))
        self._created.append(work_dir)
        return work_dir

    def _extract(self, archive_path: Path, url: str) -> dict[str, Path]:
        """Extract every file entry; keys are entry names inside the archive."""
        work_dir = self._make_work_dir()
        root = work_dir.resolve()
        entries: dict[str, Path] = {}

        try:
            with zipfile.ZipFile(archive_path) as zf:
                for info in zf.infolist():
                    if info.is_dir() or info.filename.startswith("__MACOSX/"):
                        continue
                    target = (work_dir / info.filename).resolve()
                    if not target.is_relative_to(root):
                        raise ArchiveIntegrityError(
                            f"Archive entry {info.filename!r} from {url} would "
                            f"extract outside {work_dir}",
                            expected=None,
                            found=[info.filename],
                        )
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with zf.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    entries[info.filename] = target
        except zipfile.BadZipFile as e:
            raise ArchiveIntegrityError(
                f"Corrupt archive from {url}: {e}", found=[]
            ) from e

        self.logger.info(
            "Extracted %d entries from %s: %s", len(entries), url, sorted(entries)
        )
        return entries

    @staticmethod
    def _select_entry(
        entries: dict[str, Path], csv_file_name: str | None, url: str
    ) -> Path:
        """
        Entry whose full path or base name equals csv_file_name exactly. The
        extension is part of the name: "data" does not select "data.csv".
        """
        found = sorted(entries)
        if not entries:
            raise ArchiveIntegrityError(
                f"Archive from {url} contains no files",
                expected=csv_file_name,
                found=found,
            )
        if csv_file_name is None:
            return next(iter(entries.values()))

        for name in found:
            if name == csv_file_name or PurePosixPath(name).name == csv_file_name:
                return entries[name]

        raise ArchiveIntegrityError(
            f"Expected {csv_file_name!r} in archive from {url} (exact name, "
            f"including extension); found {found}",
            expected=csv_file_name,
            found=found,
        )


def _filename_from_url(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name
    return name or "download"
