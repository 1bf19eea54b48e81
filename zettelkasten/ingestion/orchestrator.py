"""Orchestration service for the keyword indexing pass."""

import threading
from pathlib import Path
from typing import Callable

from loguru import logger

from zettelkasten.config import Settings
from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.domain.note import NOTE_SUFFIXES, DictionaryEntry, Note
from zettelkasten.domain.report import NoteOutcome, Outcome, OutcomeKind, RunReport, RunState
from zettelkasten.domain.rules import RuleSet
from zettelkasten.errors import (
    BackendIntegrityError,
    BackendLockedError,
    ConfigError,
    FilesystemError,
    MissingDirectoryError,
    MissingRuleFileError,
)

from .keyword_extractor import KeywordExtractor
from .link_materializer import LinkMaterializer
from .rule_store import RuleStore


class ScanOrchestrator:
    """Drives a batch pass: enumerate notes, extract keywords, link, record.

    All dictionary writes of a run share one batch transaction owned by the
    orchestrator. Per-note failures are recorded in the run report and the
    pass moves on; a dictionary failure aborts and rolls back the batch.
    """

    def __init__(
        self,
        *,
        notes_dir: Path,
        rule_store: RuleStore,
        dictionary: DictionaryIndex,
        extractor: KeywordExtractor | None = None,
        materializer: LinkMaterializer | None = None,
    ):
        """Initialize the orchestrator with required services.

        Args:
            notes_dir: Directory holding the original notes
            rule_store: Keyword routing rules
            dictionary: Dictionary backend receiving one entry per note
            extractor: Keyword extractor, default one if omitted
            materializer: Link materializer, built on ``rule_store`` if omitted
        """
        self.notes_dir = Path(notes_dir)
        self.rule_store = rule_store
        self.dictionary = dictionary
        self.extractor = extractor or KeywordExtractor()
        self.materializer = materializer or LinkMaterializer(rule_store)
        self.state = RunState.IDLE

    @classmethod
    def from_settings(cls, settings: Settings, dictionary: DictionaryIndex) -> "ScanOrchestrator":
        return cls(
            notes_dir=settings.originals_dir,
            rule_store=RuleStore(settings.rules_file, links_dir=settings.links_dir),
            dictionary=dictionary,
        )

    def validate(self) -> None:
        """Check that the inputs of a run exist, without touching the backend.

        Raises:
            MissingDirectoryError: If the notes directory is missing
            MissingRuleFileError: If the rule file is missing
        """
        self.state = RunState.VALIDATING
        if not self.notes_dir.is_dir():
            raise MissingDirectoryError(f"Originals directory does not exist: {self.notes_dir}")
        if not self.rule_store.exists():
            raise MissingRuleFileError(f"Rules file does not exist: {self.rule_store.rules_file}")

    def run(self, cancel_event: threading.Event | None = None) -> RunReport:
        """Index every note under the notes directory.

        Args:
            cancel_event: When set, the run stops before the next note; notes
                already processed are still committed

        Returns:
            RunReport describing every note and the final state
        """
        return self._run(self.get_note_files, cancel_event)

    def scan_note(self, path: Path) -> RunReport:
        """Index a single note in its own batch."""
        return self._run(lambda: [Path(path)], None)

    def _run(
        self, list_files: Callable[[], list[Path]], cancel_event: threading.Event | None
    ) -> RunReport:
        report = RunReport()
        try:
            self.validate()
            rules = self.rule_store.load()
        except ConfigError as e:
            logger.error(str(e))
            return self._fail(report, e)

        files = list_files()
        if not files:
            logger.warning(f"No markdown or org files found in {self.notes_dir}")

        self.state = RunState.INDEXING
        try:
            with self.dictionary.batch():
                self.dictionary.sync_rules(rules)
                for i, file in enumerate(files, start=1):
                    if cancel_event is not None and cancel_event.is_set():
                        logger.warning(f"Run cancelled after {i - 1}/{len(files)} files")
                        report.cancelled = True
                        report.outcome = Outcome(kind=OutcomeKind.CANCELLED, message="Run cancelled")
                        break
                    logger.info(f"Processing file {i}/{len(files)}: {file.name}")
                    report.notes.append(self._process_note(file, rules))
                self.state = RunState.COMMITTING
        except (BackendIntegrityError, BackendLockedError, ConfigError, FilesystemError) as e:
            logger.error(f"Dictionary batch failed, rolled back: {e}")
            report.backends_in_sync = self.dictionary.in_sync
            return self._fail(report, e)

        report.committed = True
        report.backends_in_sync = self.dictionary.in_sync
        report.state = self.state = RunState.IDLE

        logger.info("Processing complete:")
        logger.info(f"  - Files: {len(report.notes)}")
        logger.info(f"  - Links created: {len(report.created_links)}")
        logger.info(f"  - Notes with unmapped keywords: {len(report.unmapped)}")
        logger.info(f"  - Failed notes: {len(report.failures)}")
        return report

    def _fail(self, report: RunReport, error: Exception) -> RunReport:
        report.state = self.state = RunState.FAILED
        report.outcome = Outcome.from_error(error)
        report.committed = False
        return report

    def _process_note(self, file: Path, rules: RuleSet) -> NoteOutcome:
        """Normalize, extract, materialize and record one note.

        Filesystem and config problems of the note are captured in the
        returned outcome. Dictionary errors propagate so the caller can abort
        the batch.
        """
        result = NoteOutcome(path=str(file.resolve()))
        try:
            note = self._load_note(file)
            keywords = self.extractor.extract(note.content)
            note.keywords = sorted(keywords)
            materialized = self.materializer.materialize(note, keywords, rules)
        except (FilesystemError, ConfigError) as e:
            logger.error(f"Failed to process {file}: {e}")
            result.outcome = Outcome.from_error(e)
            result.errors.append(str(e))
            return result

        entry = DictionaryEntry(
            filename=note.filename, canonical_path=note.path, links=materialized.links
        )
        self.dictionary.upsert(entry)

        result.created_links = [link.path for link in materialized.created]
        result.link_paths = entry.link_paths
        result.unmapped = materialized.unmapped
        result.conflicts = materialized.conflicts
        if materialized.failures:
            result.errors = [f"{kw}: {msg}" for kw, msg in materialized.failures.items()]
            result.outcome = Outcome(
                kind=OutcomeKind.FILESYSTEM_ERROR, message="; ".join(result.errors)
            )
        return result

    def _load_note(self, file: Path) -> Note:
        """Read a note and rewrite its legacy markers in place, once."""
        try:
            raw = file.read_text(encoding="utf-8")
            content = self.extractor.normalize(raw)
            if content != raw:
                logger.info(f"Normalized keyword markers in file: {file.name}")
                file.write_text(content, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FilesystemError(f"Cannot read note {file}: {e}") from e
        return Note.from_path(file, content=content)

    def get_note_files(self) -> list[Path]:
        """Get all note files in a stable order, skipping symlinks.

        Returns:
            Sorted list of ``.md`` and ``.org`` files under the notes directory
        """
        return sorted(
            p
            for p in self.notes_dir.rglob("*")
            if p.suffix in NOTE_SUFFIXES and p.is_file() and not p.is_symlink()
        )
