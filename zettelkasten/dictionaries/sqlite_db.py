import json
import os
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, List, TypeVar

from loguru import logger
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.domain.note import DictionaryEntry, Link, Note
from zettelkasten.domain.report import RepairReport
from zettelkasten.domain.rules import RuleSet
from zettelkasten.domain.suggestion import ScoredKeyword, Suggestion
from zettelkasten.errors import BackendIntegrityError, BackendLockedError, SuggestionNotFoundError

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT NOT NULL,
    canonical_path TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS keywords (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    keyword TEXT NOT NULL UNIQUE,
    folder TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS note_keywords (
    note_id INTEGER NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    keyword_id INTEGER NOT NULL REFERENCES keywords(id) ON DELETE CASCADE,
    link_path TEXT NOT NULL,
    PRIMARY KEY (note_id, keyword_id)
);
CREATE TABLE IF NOT EXISTS suggestions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    note_id INTEGER NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    keyword TEXT NOT NULL,
    confidence REAL NOT NULL CHECK (confidence >= 0.0 AND confidence <= 1.0),
    applied INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_suggestions_note ON suggestions (note_id, applied);
"""

# Parent tables first so foreign keys hold during reimport
TABLE_COLUMNS = {
    "notes": ["id", "filename", "canonical_path", "created_at"],
    "keywords": ["id", "keyword", "folder"],
    "note_keywords": ["note_id", "keyword_id", "link_path"],
    "suggestions": ["id", "note_id", "keyword", "confidence", "applied"],
}


def is_lock_error(error: BaseException) -> bool:
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return "locked" in message or "busy" in message


class SQLiteDictionary(DictionaryIndex):
    """Relational dictionary backend on SQLite.

    Transactions are controlled explicitly (autocommit connection, manual
    ``BEGIN IMMEDIATE``/``COMMIT``). Lock contention is retried with bounded
    exponential backoff before surfacing as ``BackendLockedError``.

    The connection is shared between threads. A batch holds the connection
    lock until it commits or rolls back, so other threads wait for it instead
    of joining it.

    A file that is not a readable database raises ``BackendIntegrityError``
    unless ``allow_damaged`` is set, in which case only ``integrity_check``
    and ``repair`` are meaningful.
    """

    in_sync = True

    def __init__(
        self,
        filepath: str | Path,
        *,
        backup_dir: str | Path = "backups",
        busy_timeout: float = 5.0,
        lock_retries: int = 5,
        lock_backoff: float = 0.1,
        allow_damaged: bool = False,
    ) -> None:
        self._filepath = Path(filepath)
        self._backup_dir = Path(backup_dir)
        self._busy_timeout = busy_timeout
        self._lock_retries = max(1, lock_retries)
        self._lock_backoff = lock_backoff
        self._lock = threading.RLock()
        self._in_batch = False
        self._damage: str | None = None
        self._conn = self._connect()
        try:
            self._create_schema()
        except sqlite3.DatabaseError as e:
            if not allow_damaged:
                self._conn.close()
                raise BackendIntegrityError(
                    f"Database {self._filepath} is damaged: {e}", anomalies=[f"database error: {e}"]
                ) from e
            logger.warning(f"Opened damaged database {self._filepath}: {e}")
            self._damage = str(e)

    @property
    def filepath(self) -> Path:
        return self._filepath

    def _connect(self) -> sqlite3.Connection:
        self._filepath.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self._filepath),
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,  # the API serves sync routes from a worker pool
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _create_schema(self) -> None:
        self._with_lock_retry(lambda: self._conn.execute("PRAGMA foreign_keys=ON"))
        self._with_lock_retry(lambda: self._conn.executescript(SCHEMA))

    @property
    def damaged(self) -> bool:
        return self._damage is not None

    def _with_lock_retry(self, func: Callable[[], T]) -> T:
        """Run a database call, retrying while the store reports busy/locked."""
        retrying = Retrying(
            stop=stop_after_attempt(self._lock_retries),
            wait=wait_exponential(multiplier=self._lock_backoff, max=2.0),
            retry=retry_if_exception(is_lock_error),
            before_sleep=lambda state: logger.warning(
                f"Database locked (attempt {state.attempt_number}/{self._lock_retries}), retrying"
            ),
            reraise=True,
        )
        try:
            with self._lock:
                return retrying(func)
        except sqlite3.OperationalError as e:
            if is_lock_error(e):
                logger.error(f"Database lock retry exhausted after {self._lock_retries} attempts")
                raise BackendLockedError(f"Database {self._filepath} is locked: {e}") from e
            raise

    def _clear_stale_transaction(self) -> None:
        if self._conn.in_transaction:
            logger.warning("Rolling back a stale open transaction before starting a new one")
            self._conn.execute("ROLLBACK")

    def _commit(self) -> None:
        self._with_lock_retry(lambda: self._conn.execute("COMMIT"))

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Wrap every write inside the block in a single transaction.

        Nested use in the same thread joins the outer transaction; other
        threads block until it ends. Any exception rolls the whole batch back;
        nothing is committed partially.
        """
        with self._lock:
            if self._in_batch:
                try:
                    yield
                except sqlite3.Error as e:
                    raise BackendIntegrityError(f"Dictionary write failed: {e}") from e
                return

            self._clear_stale_transaction()
            self._with_lock_retry(lambda: self._conn.execute("BEGIN IMMEDIATE"))
            self._in_batch = True
            try:
                yield
                self._commit()
            except sqlite3.Error as e:
                self._rollback()
                logger.error(f"Batch rolled back: {e}")
                raise BackendIntegrityError(f"Dictionary write failed: {e}") from e
            except BaseException:
                self._rollback()
                logger.error("Batch rolled back")
                raise
            finally:
                self._in_batch = False

    def _keyword_id(self, keyword: str, folder: str) -> int:
        self._conn.execute(
            "INSERT OR IGNORE INTO keywords (keyword, folder) VALUES (?, ?)", (keyword, folder)
        )
        row = self._conn.execute("SELECT id FROM keywords WHERE keyword = ?", (keyword,)).fetchone()
        return row["id"]

    def _note_id(self, filename: str, canonical_path: str) -> int:
        self._conn.execute(
            "INSERT INTO notes (filename, canonical_path) VALUES (?, ?) "
            "ON CONFLICT (canonical_path) DO UPDATE SET filename = excluded.filename",
            (filename, canonical_path),
        )
        row = self._conn.execute(
            "SELECT id FROM notes WHERE canonical_path = ?", (canonical_path,)
        ).fetchone()
        return row["id"]

    def upsert(self, entry: DictionaryEntry) -> None:
        with self.batch():
            note_id = self._note_id(entry.filename, entry.canonical_path)
            self._conn.execute("DELETE FROM note_keywords WHERE note_id = ?", (note_id,))
            for link in entry.links:
                if link.keyword is None:
                    raise BackendIntegrityError(f"Link {link.path} has no keyword")
                keyword_id = self._keyword_id(link.keyword, str(Path(link.path).parent))
                self._conn.execute(
                    "INSERT INTO note_keywords (note_id, keyword_id, link_path) VALUES (?, ?, ?)",
                    (note_id, keyword_id, link.path),
                )

    def _entry_from_row(self, row: sqlite3.Row) -> DictionaryEntry:
        links = self._conn.execute(
            "SELECT k.keyword, nk.link_path FROM note_keywords nk "
            "JOIN keywords k ON k.id = nk.keyword_id "
            "WHERE nk.note_id = ? ORDER BY k.keyword",
            (row["id"],),
        ).fetchall()
        return DictionaryEntry(
            filename=row["filename"],
            canonical_path=row["canonical_path"],
            links=[
                Link(note_path=row["canonical_path"], keyword=link["keyword"], path=link["link_path"])
                for link in links
            ],
        )

    def lookup(self, note: Note) -> DictionaryEntry | None:
        with self._lock:
            row = self._with_lock_retry(
                lambda: self._conn.execute(
                    "SELECT id, filename, canonical_path FROM notes WHERE canonical_path = ?",
                    (note.path,),
                ).fetchone()
            )
            return self._entry_from_row(row) if row else None

    def entries(self) -> List[DictionaryEntry]:
        with self._lock:
            rows = self._with_lock_retry(
                lambda: self._conn.execute(
                    "SELECT id, filename, canonical_path FROM notes ORDER BY canonical_path"
                ).fetchall()
            )
            return [self._entry_from_row(row) for row in rows]

    def sync_rules(self, rules: RuleSet) -> None:
        with self.batch():
            for rule in rules.rules.values():
                self._conn.execute(
                    "INSERT INTO keywords (keyword, folder) VALUES (?, ?) "
                    "ON CONFLICT (keyword) DO UPDATE SET folder = excluded.folder",
                    (rule.keyword, rule.folder),
                )

    def integrity_check(self) -> List[str]:
        """Run SQLite's own checks plus the invariants of the dictionary schema."""
        anomalies = []
        try:
            with self._lock:
                rows = self._conn.execute("PRAGMA integrity_check").fetchall()
                if rows and rows[0][0] != "ok":
                    anomalies.extend(f"integrity: {row[0]}" for row in rows)

                for row in self._conn.execute("PRAGMA foreign_key_check").fetchall():
                    anomalies.append(
                        f"foreign key: {row[0]} rowid {row[1]} references missing {row[2]}"
                    )

                for row in self._conn.execute(
                    "SELECT id, confidence FROM suggestions WHERE confidence < 0 OR confidence > 1"
                ).fetchall():
                    anomalies.append(
                        f"suggestion {row['id']}: confidence {row['confidence']} out of range"
                    )

                for row in self._conn.execute(
                    "SELECT link_path, COUNT(*) AS n FROM note_keywords "
                    "GROUP BY link_path HAVING COUNT(*) > 1"
                ).fetchall():
                    anomalies.append(f"link path {row['link_path']} claimed by {row['n']} rows")
        except sqlite3.DatabaseError as e:
            anomalies.append(f"database error: {e}")

        if anomalies:
            logger.warning(f"Integrity check found {len(anomalies)} anomalies")
        return anomalies

    def _timestamp(self) -> str:
        return datetime.now().strftime("%Y%m%d-%H%M%S-%f")

    def _backup(self, stamp: str) -> Path:
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        backup_path = self._backup_dir / f"{self._filepath.stem}-{stamp}.bak.db"
        if self.damaged:
            shutil.copy2(self._filepath, backup_path)
            logger.info(f"Copied damaged {self._filepath} to {backup_path}")
            return backup_path
        try:
            dest = sqlite3.connect(str(backup_path))
            try:
                self._conn.backup(dest)
            finally:
                dest.close()
        except sqlite3.DatabaseError as e:
            # The online backup API refuses damaged pages; keep the raw bytes instead
            logger.warning(f"Online backup failed ({e}); copying the database file")
            shutil.copy2(self._filepath, backup_path)
        logger.info(f"Backed up {self._filepath} to {backup_path}")
        return backup_path

    def _export_tables(self, export_dir: Path) -> None:
        export_dir.mkdir(parents=True, exist_ok=True)
        for table in TABLE_COLUMNS:
            target = export_dir / f"{table}.jsonl"
            try:
                rows = self._conn.execute(f"SELECT * FROM {table}").fetchall()
            except sqlite3.DatabaseError as e:
                logger.error(f"Could not export table {table}: {e}")
                target.write_text("", encoding="utf-8")
                continue
            with open(target, "w", encoding="utf-8") as f:
                for row in rows:
                    f.write(json.dumps(dict(row)) + "\n")
            logger.info(f"Exported {len(rows)} rows from {table}")

    def _rebuild(self, stamp: str) -> None:
        self._conn.close()
        damaged = self._backup_dir / f"{self._filepath.stem}-{stamp}.damaged.db"
        os.replace(self._filepath, damaged)
        for suffix in ("-wal", "-shm", "-journal"):
            sidecar = Path(f"{self._filepath}{suffix}")
            if sidecar.exists():
                os.replace(sidecar, Path(f"{damaged}{suffix}"))
        self._conn = self._connect()
        self._create_schema()
        self._damage = None
        logger.info(f"Rebuilt empty schema at {self._filepath}")

    def _import_tables(self, export_dir: Path) -> tuple[dict[str, int], dict[str, int]]:
        imported: dict[str, int] = {}
        failed: dict[str, int] = {}
        for table, columns in TABLE_COLUMNS.items():
            imported[table] = failed[table] = 0
            source = export_dir / f"{table}.jsonl"
            if not source.exists():
                continue

            with self.batch():
                for line in source.read_text(encoding="utf-8").splitlines():
                    row = self._decode_row(line)
                    values = {col: row[col] for col in columns if row and col in row}
                    if not values:
                        failed[table] += 1
                        continue
                    placeholders = ", ".join("?" for _ in values)
                    try:
                        self._conn.execute(
                            f"INSERT INTO {table} ({', '.join(values)}) VALUES ({placeholders})",
                            list(values.values()),
                        )
                        imported[table] += 1
                    except sqlite3.Error as e:
                        logger.warning(f"Skipping row of {table}: {e}")
                        failed[table] += 1
            logger.info(f"Imported {imported[table]} rows into {table} ({failed[table]} failed)")
        return imported, failed

    @staticmethod
    def _decode_row(line: str) -> dict[str, Any] | None:
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            return None
        return row if isinstance(row, dict) else None

    def repair(self) -> RepairReport:
        """Back up, check, then compact or rebuild the store.

        A healthy store is compacted with VACUUM. A store with anomalies has
        every table exported to JSON lines, is moved aside and replaced by an
        empty schema, and the export is reimported row by row. The backup is
        never removed, and rows that fail to reimport are counted, not fatal.
        A file that is not a database at all exports nothing and is rebuilt
        empty.
        """
        with self._lock:
            self._clear_stale_transaction()
            stamp = self._timestamp()
            backup_path = self._backup(stamp)
            anomalies = self.integrity_check()

            if not anomalies:
                self._with_lock_retry(lambda: self._conn.execute("VACUUM"))
                logger.info("Integrity check passed; database compacted")
                return RepairReport(backup_path=str(backup_path), integrity_ok=True)

            export_dir = self._backup_dir / f"{self._filepath.stem}-{stamp}-export"
            self._export_tables(export_dir)
            self._rebuild(stamp)
            imported, failed = self._import_tables(export_dir)
        return RepairReport(
            backup_path=str(backup_path),
            integrity_ok=False,
            anomalies=anomalies,
            action="rebuilt",
            export_dir=str(export_dir),
            imported=imported,
            failed=failed,
        )

    def add_suggestions(self, note: Note, keywords: List[ScoredKeyword]) -> List[Suggestion]:
        created = []
        with self.batch():
            note_id = self._note_id(note.filename, note.path)
            for scored in keywords:
                cursor = self._conn.execute(
                    "INSERT INTO suggestions (note_id, keyword, confidence) VALUES (?, ?, ?)",
                    (note_id, scored.keyword, scored.confidence),
                )
                created.append(
                    Suggestion(
                        id=cursor.lastrowid,
                        note_path=note.path,
                        keyword=scored.keyword,
                        confidence=scored.confidence,
                    )
                )
        return created

    @staticmethod
    def _suggestion_from_row(row: sqlite3.Row) -> Suggestion:
        return Suggestion(
            id=row["id"],
            note_path=row["canonical_path"],
            keyword=row["keyword"],
            confidence=row["confidence"],
            applied=bool(row["applied"]),
        )

    def get_suggestion(self, suggestion_id: int) -> Suggestion | None:
        row = self._with_lock_retry(
            lambda: self._conn.execute(
                "SELECT s.id, n.canonical_path, s.keyword, s.confidence, s.applied "
                "FROM suggestions s JOIN notes n ON n.id = s.note_id WHERE s.id = ?",
                (suggestion_id,),
            ).fetchone()
        )
        return self._suggestion_from_row(row) if row else None

    def note_suggestions(self, note: Note) -> List[Suggestion]:
        rows = self._with_lock_retry(
            lambda: self._conn.execute(
                "SELECT s.id, n.canonical_path, s.keyword, s.confidence, s.applied "
                "FROM suggestions s JOIN notes n ON n.id = s.note_id "
                "WHERE n.canonical_path = ? ORDER BY s.id",
                (note.path,),
            ).fetchall()
        )
        return [self._suggestion_from_row(row) for row in rows]

    def pending_suggestions(self, note: Note) -> List[Suggestion]:
        rows = self._with_lock_retry(
            lambda: self._conn.execute(
                "SELECT s.id, n.canonical_path, s.keyword, s.confidence, s.applied "
                "FROM suggestions s JOIN notes n ON n.id = s.note_id "
                "WHERE n.canonical_path = ? AND s.applied = 0 "
                "ORDER BY s.confidence DESC, s.id",
                (note.path,),
            ).fetchall()
        )
        return [self._suggestion_from_row(row) for row in rows]

    def mark_applied(self, suggestion_id: int) -> Suggestion:
        with self._lock:
            with self.batch():
                cursor = self._conn.execute(
                    "UPDATE suggestions SET applied = 1 WHERE id = ?", (suggestion_id,)
                )
            suggestion = self.get_suggestion(suggestion_id) if cursor.rowcount else None
        if suggestion is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        return suggestion

    def close(self) -> None:
        with self._lock:
            self._rollback()
            self._conn.close()
