from contextlib import AbstractContextManager
from typing import List, Protocol

from zettelkasten.domain.note import DictionaryEntry, Note
from zettelkasten.domain.report import RepairReport
from zettelkasten.domain.rules import RuleSet
from zettelkasten.domain.suggestion import ScoredKeyword, Suggestion


class DictionaryIndex(Protocol):
    in_sync: bool  # False once a failed batch left mirrored stores disagreeing

    def upsert(self, entry: DictionaryEntry) -> None:
        """Create or wholesale replace the entry of a note. Idempotent."""
        ...

    def lookup(self, note: Note) -> DictionaryEntry | None:
        """Get the entry of a note."""
        ...

    def entries(self) -> List[DictionaryEntry]:
        """Get every entry in the dictionary."""
        ...

    def batch(self) -> AbstractContextManager[None]:
        """Scope a batch of writes; commits on exit, rolls back on error."""
        ...

    def sync_rules(self, rules: RuleSet) -> None:
        """Mirror the routing rules into the store, where the store keeps them."""
        ...

    def integrity_check(self) -> List[str]:
        """Get the list of anomalies in the store; empty when healthy."""
        ...

    def repair(self) -> RepairReport:
        """Back up the store, then compact it or rebuild it from an export."""
        ...

    def add_suggestions(self, note: Note, keywords: List[ScoredKeyword]) -> List[Suggestion]:
        """Store scored keywords as pending suggestions for a note."""
        ...

    def get_suggestion(self, suggestion_id: int) -> Suggestion | None:
        """Get a suggestion by its ID."""
        ...

    def note_suggestions(self, note: Note) -> List[Suggestion]:
        """Get every suggestion ever stored for a note, consumed ones included."""
        ...

    def pending_suggestions(self, note: Note) -> List[Suggestion]:
        """Get unapplied suggestions of a note, highest confidence first."""
        ...

    def mark_applied(self, suggestion_id: int) -> Suggestion:
        """Set the terminal applied flag of a suggestion."""
        ...

    def close(self) -> None:
        """Release any handle on the underlying store."""
        ...
