from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from .errors import CacheIOError

LOGGER = logging.getLogger(__name__)

CACHE_DIR = Path(".bucketsite") / "cache"
STORE_FILENAME = "digests.sqlite3"
SCHEMA_VERSION = 1

POST_PREFIX = "post:"
PAGE_PREFIX = "page:"
CURSOR_PREFIX = "cursor:"
TAG_PREFIX = "tag:"
ARCHIVE_PREFIX = "archive:"
FEED_PREFIX = "feed:"
SEARCH_INDEX_KEY = "search:index"
STATIC_KEY = "static:assets"
STANDALONE_PREFIX = "standalone:"
SITE_INPUTS_KEY = "site:inputs"


def list_files(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return [path for path in root.rglob("*") if path.is_file()]


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_text(text: str) -> str:
    return hash_bytes(text.encode("utf-8"))


def hash_paths(paths: list[Path], base: Optional[Path] = None) -> str:
    digest = hashlib.sha256()
    for path in sorted(paths, key=lambda p: p.as_posix()):
        rel = path
        if base is not None:
            try:
                rel = path.relative_to(base)
            except ValueError:
                rel = path
        digest.update(rel.as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


def hash_payload(value: object) -> str:
    data = json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)
    return hash_text(data)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    digest: str
    payload: dict = field(default_factory=dict)


class DigestStore:
    """Persistent key -> (digest, payload) map on top of SQLite.

    Every ``put``/``delete`` commits on its own, so a pass interrupted at any
    point leaves only complete single-key writes behind. Writes coming from
    several threads are serialised with a lock.
    """

    def __init__(self, conn: sqlite3.Connection, path: Path) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self.path = path

    @classmethod
    def open(cls, path: Path) -> "DigestStore":
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheIOError(f"failed to create cache directory {path.parent}: {exc}") from exc
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False, isolation_level=None)
        except sqlite3.Error as exc:
            raise CacheIOError(f"failed to open cache database {path}: {exc}") from exc
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entries (
                    key TEXT PRIMARY KEY,
                    digest TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE TABLE IF NOT EXISTS meta (name TEXT PRIMARY KEY, value TEXT NOT NULL)")
            row = conn.execute("SELECT value FROM meta WHERE name = 'schema_version'").fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO meta (name, value) VALUES ('schema_version', ?)",
                    (str(SCHEMA_VERSION),),
                )
            elif row[0] != str(SCHEMA_VERSION):
                raise CacheIOError(f"{path}: unsupported cache schema version {row[0]}")
            conn.execute("PRAGMA quick_check").fetchone()
        except sqlite3.DatabaseError as exc:
            conn.close()
            raise CacheIOError(f"cache database {path} is unreadable: {exc}") from exc
        except CacheIOError:
            conn.close()
            raise
        return cls(conn, path)

    @classmethod
    def open_or_reset(cls, path: Path) -> tuple["DigestStore", bool]:
        """Open the store; a corrupt file is moved aside and replaced.

        Returns the store and whether it had to be reset, in which case the
        caller must treat the pass as a full rebuild.
        """
        try:
            return cls.open(path), False
        except CacheIOError as exc:
            LOGGER.warning("%s; starting with an empty cache", exc)
        broken = path.with_name(path.name + ".corrupt")
        for suffix in ("", "-wal", "-shm"):
            candidate = Path(str(path) + suffix)
            if not candidate.exists():
                continue
            try:
                if suffix:
                    candidate.unlink()
                else:
                    candidate.replace(broken)
            except OSError as exc:
                raise CacheIOError(f"failed to move aside corrupt cache {candidate}: {exc}") from exc
        return cls.open(path), True

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            row = self._conn.execute("SELECT digest, payload FROM entries WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise CacheIOError(f"failed to read cache key {key}: {exc}") from exc
        if row is None:
            return None
        try:
            payload = json.loads(row[1]) if row[1] else {}
        except json.JSONDecodeError:
            LOGGER.warning("cache payload for %s is not valid JSON; ignoring it", key)
            return None
        return CacheEntry(key=key, digest=row[0], payload=payload)

    def get_digest(self, key: str) -> Optional[str]:
        entry = self.get(key)
        return entry.digest if entry else None

    def put(self, key: str, entry: CacheEntry) -> None:
        data = json.dumps(entry.payload, sort_keys=True, ensure_ascii=False, default=str)
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO entries (key, digest, payload) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET digest = excluded.digest, payload = excluded.payload",
                    (key, entry.digest, data),
                )
            except sqlite3.Error as exc:
                raise CacheIOError(f"failed to update cache key {key}: {exc}") from exc

    def store(self, key: str, digest: str, payload: Optional[dict] = None) -> None:
        self.put(key, CacheEntry(key=key, digest=digest, payload=payload or {}))

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                self._conn.execute("DELETE FROM entries WHERE key = ?", (key,))
            except sqlite3.Error as exc:
                raise CacheIOError(f"failed to remove cache key {key}: {exc}") from exc

    def delete_prefix(self, namespace: str) -> int:
        pattern = _like_prefix(namespace)
        with self._lock:
            try:
                cursor = self._conn.execute("DELETE FROM entries WHERE key LIKE ? ESCAPE '\\'", (pattern,))
            except sqlite3.Error as exc:
                raise CacheIOError(f"failed to remove cache entries under {namespace}: {exc}") from exc
        return cursor.rowcount

    def keys(self, prefix: str = "") -> list[str]:
        try:
            rows = self._conn.execute(
                "SELECT key FROM entries WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (_like_prefix(prefix),),
            ).fetchall()
        except sqlite3.Error as exc:
            raise CacheIOError(f"failed to list cache entries under {prefix}: {exc}") from exc
        return [row[0] for row in rows]

    def entries(self, prefix: str = "") -> Iterator[CacheEntry]:
        for key in self.keys(prefix):
            entry = self.get(key)
            if entry is not None:
                yield entry

    def clear(self) -> None:
        self.delete_prefix("")

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error as exc:
                raise CacheIOError(f"failed to close cache database {self.path}: {exc}") from exc

    def __enter__(self) -> "DigestStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def store_path(root: Path) -> Path:
    return root / CACHE_DIR / STORE_FILENAME
