from contextlib import contextmanager
from typing import Iterator, List

from loguru import logger

from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.dictionaries.flat_db import FlatDictionary
from zettelkasten.dictionaries.sqlite_db import SQLiteDictionary
from zettelkasten.domain.note import DictionaryEntry, Note
from zettelkasten.domain.report import RepairReport
from zettelkasten.domain.rules import RuleSet
from zettelkasten.domain.suggestion import ScoredKeyword, Suggestion


class MirroredDictionary(DictionaryIndex):
    """SQLite dictionary with every entry also written to the flat file.

    Flat writes land immediately while relational writes wait for the batch
    commit. When a batch fails after the flat file was touched, ``in_sync``
    turns False until the next batch commits cleanly.
    """

    def __init__(self, primary: SQLiteDictionary, mirror: FlatDictionary) -> None:
        self.primary = primary
        self.mirror = mirror
        self.in_sync = True
        self._mirror_writes = 0

    def upsert(self, entry: DictionaryEntry) -> None:
        self.primary.upsert(entry)
        self.mirror.upsert(entry)
        self._mirror_writes += 1

    def lookup(self, note: Note) -> DictionaryEntry | None:
        return self.primary.lookup(note)

    def entries(self) -> List[DictionaryEntry]:
        return self.primary.entries()

    @contextmanager
    def batch(self) -> Iterator[None]:
        self._mirror_writes = 0
        try:
            with self.primary.batch():
                yield
        except BaseException:
            if self._mirror_writes:
                self.in_sync = False
                logger.error(
                    f"Relational batch failed after {self._mirror_writes} flat dictionary "
                    "writes; the two dictionaries are out of sync"
                )
            raise
        self.in_sync = True

    def sync_rules(self, rules: RuleSet) -> None:
        self.primary.sync_rules(rules)

    def integrity_check(self) -> List[str]:
        anomalies = self.primary.integrity_check()
        anomalies.extend(f"flat: {a}" for a in self.mirror.integrity_check())
        return anomalies

    def repair(self) -> RepairReport:
        return self.primary.repair()

    def add_suggestions(self, note: Note, keywords: List[ScoredKeyword]) -> List[Suggestion]:
        return self.primary.add_suggestions(note, keywords)

    def get_suggestion(self, suggestion_id: int) -> Suggestion | None:
        return self.primary.get_suggestion(suggestion_id)

    def note_suggestions(self, note: Note) -> List[Suggestion]:
        return self.primary.note_suggestions(note)

    def pending_suggestions(self, note: Note) -> List[Suggestion]:
        return self.primary.pending_suggestions(note)

    def mark_applied(self, suggestion_id: int) -> Suggestion:
        return self.primary.mark_applied(suggestion_id)

    def close(self) -> None:
        self.primary.close()
        self.mirror.close()
