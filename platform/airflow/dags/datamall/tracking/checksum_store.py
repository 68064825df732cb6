from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def calculate_checksum(
    filepath: str | Path, algorithm: str = "sha256", chunk_size: int = 65536
) -> str:
    """Hex digest of a file's bytes, read in chunks."""
    digest = hashlib.new(algorithm)
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def slugify_identifier(identifier: str) -> str:
    return re.sub(r"\s+", "-", identifier.strip().lower())


class ChecksumStore:
    """
    Last-seen content checksum per source file.

    When backed by a PostgresEngine, checksums persist in
    meta.file_checksums and reads go through an in-memory cache. Without
    an engine the store is memory-only.
    """

    TABLE_NAME = "meta.file_checksums"

    def __init__(self, engine: Any | None = None) -> None:
        self.engine = engine
        self.logger = logging.getLogger("checksum_store")
        self._cache: dict[str, str] = {}

    def ensure_table(self) -> None:
        if self.engine is None:
            return
        self.engine.execute("create schema if not exists meta")
        self.engine.execute(
            f"""
            create table if not exists {self.TABLE_NAME} (
                identifier  text primary key,
                checksum    text not null,
                updated_at  timestamptz not null default now()
            )
            """
        )

    def get_cached_checksum(self, identifier: str) -> str | None:
        key = slugify_identifier(identifier)
        if key in self._cache:
            return self._cache[key]
        if self.engine is None:
            return None

        rows = self.engine.fetch_dicts(
            f"select checksum from {self.TABLE_NAME} where identifier = %(identifier)s",
            {"identifier": key},
        )
        if not rows:
            return None
        checksum = rows[0]["checksum"]
        self._cache[key] = checksum
        return checksum

    def cache_checksum(self, identifier: str, checksum: str) -> None:
        key = slugify_identifier(identifier)
        if self.engine is not None:
            self.engine.execute(
                f"""
                insert into {self.TABLE_NAME} (identifier, checksum, updated_at)
                values (%(identifier)s, %(checksum)s, now())
                on conflict (identifier) do update
                    set checksum = excluded.checksum,
                        updated_at = excluded.updated_at
                """,
                {"identifier": key, "checksum": checksum},
            )
        self._cache[key] = checksum
        self.logger.info("Cached checksum for %s: %s", key, checksum)
