"""Structured outcomes returned by batch operations."""

from enum import Enum

from pydantic import BaseModel, Field


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    CONFIG_ERROR = "config_error"
    FILESYSTEM_ERROR = "filesystem_error"
    BACKEND_LOCKED = "backend_locked"
    BACKEND_INTEGRITY = "backend_integrity"
    EXTERNAL_SERVICE = "external_service"
    DUPLICATE_KEYWORD = "duplicate_keyword"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


class Outcome(BaseModel):
    kind: OutcomeKind = OutcomeKind.SUCCESS
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @classmethod
    def from_error(cls, error: Exception) -> "Outcome":
        kind = getattr(error, "kind", OutcomeKind.UNEXPECTED)
        return cls(kind=kind, message=str(error) or type(error).__name__)


class RunState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    INDEXING = "indexing"
    COMMITTING = "committing"
    FAILED = "failed"


class NoteOutcome(BaseModel):
    """What happened to a single note during a scan.

    Attributes:
        path: Canonical path of the note
        outcome: Success or the first failure kind hit while processing it
        created_links: Link paths created by this run
        link_paths: Link paths recorded in the dictionary entry
        unmapped: Keywords found in the note that no rule routes
        conflicts: Link paths occupied by something that is not a link to the note
        errors: Every per-keyword or per-step failure message
    """

    path: str
    outcome: Outcome = Field(default_factory=Outcome)
    created_links: list[str] = []
    link_paths: list[str] = []
    unmapped: list[str] = []
    conflicts: list[str] = []
    errors: list[str] = []


class RunReport(BaseModel):
    """Per-run report of a scan.

    ``backends_in_sync`` is False when a relational commit failed after the flat
    dictionary had already been written; the two stores then disagree until the
    next successful scan.
    """

    state: RunState = RunState.IDLE
    outcome: Outcome = Field(default_factory=Outcome)
    notes: list[NoteOutcome] = []
    committed: bool = False
    cancelled: bool = False
    backends_in_sync: bool = True

    @property
    def created_links(self) -> list[str]:
        return [link for note in self.notes for link in note.created_links]

    @property
    def unmapped(self) -> dict[str, list[str]]:
        return {note.path: note.unmapped for note in self.notes if note.unmapped}

    @property
    def failures(self) -> list[NoteOutcome]:
        return [note for note in self.notes if not note.outcome.ok]


class RepairReport(BaseModel):
    backup_path: str
    integrity_ok: bool
    anomalies: list[str] = []
    action: str = "compacted"  # compacted | rebuilt
    export_dir: str | None = None
    imported: dict[str, int] = {}
    failed: dict[str, int] = {}


class SuggestReport(BaseModel):
    suggested: dict[str, list[str]] = {}
    failures: dict[str, Outcome] = {}
