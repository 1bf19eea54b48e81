"""Keyword suggestion workflow: ask, store, review, apply or ignore."""

import re
from pathlib import Path
from typing import List

from loguru import logger

from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.domain.note import Note
from zettelkasten.domain.report import Outcome, SuggestReport
from zettelkasten.domain.suggestion import ApplyResult, ScoredKeyword, Suggestion
from zettelkasten.errors import (
    ConfigError,
    ExternalServiceError,
    FilesystemError,
    SuggestionNotFoundError,
)
from zettelkasten.ingestion.orchestrator import ScanOrchestrator
from zettelkasten.suggestions.base import Suggester


URL_PATTERN = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def clean_keyword(keyword: str) -> str:
    """Make a proposed keyword usable as a marker and a rule key.

    Returns an empty string for URLs, which are links rather than keywords.
    """
    keyword = re.sub(r"[{}\[\]]", "", keyword).strip().strip("#").strip()
    if URL_PATTERN.match(keyword):
        return ""
    return re.sub(r"\s+", "_", keyword).replace(":", "")


class SuggestionPipeline:
    """Stores externally proposed keywords and feeds accepted ones back into the rules.

    Network calls happen before any dictionary write, so no backend
    transaction is held open while waiting on the service.
    """

    def __init__(
        self,
        *,
        dictionary: DictionaryIndex,
        orchestrator: ScanOrchestrator,
        suggester: Suggester | None = None,
        default_confidence: float = 0.95,
    ):
        self.suggester = suggester
        self.dictionary = dictionary
        self.orchestrator = orchestrator
        self.rule_store = orchestrator.rule_store
        self.extractor = orchestrator.extractor
        self.default_confidence = default_confidence

    def load_note(self, path: Path) -> Note:
        try:
            content = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FilesystemError(f"Cannot read note {path}: {e}") from e
        note = Note.from_path(Path(path), content=self.extractor.normalize(content))
        note.keywords = sorted(self.extractor.extract(note.content))
        return note

    def suggest(self, note: Note) -> List[Suggestion]:
        """Ask the service for keywords and store the new ones as pending.

        Raises:
            ConfigError: If no suggestion service is configured
            ExternalServiceError: If the service call or its payload fails
        """
        if self.suggester is None:
            raise ConfigError("No keyword suggestion service configured")
        proposed = self.suggester.suggest_keywords(note.content)
        scored = self._prepare(note, proposed)
        if not scored:
            logger.info(f"No new keyword suggestions for {note.filename}")
            return []

        suggestions = self.dictionary.add_suggestions(note, scored)
        logger.info(
            f"Stored {len(suggestions)} suggestions for {note.filename}: "
            f"{', '.join(s.keyword for s in suggestions)}"
        )
        return suggestions

    def _prepare(self, note: Note, proposed: List[ScoredKeyword]) -> List[ScoredKeyword]:
        """Clean, de-duplicate and score proposals, dropping known keywords."""
        present = set(self.extractor.extract(note.content))
        seen = {s.keyword for s in self.dictionary.note_suggestions(note)}

        best: dict[str, float] = {}
        for item in proposed:
            keyword = clean_keyword(item.keyword)
            if not keyword or keyword in present or keyword in seen:
                continue
            if not self.extractor.is_markable(keyword):
                logger.warning(f"Dropping suggestion {item.keyword!r}: not usable as a marker")
                continue
            confidence = item.confidence if item.confidence is not None else self.default_confidence
            best[keyword] = max(confidence, best.get(keyword, 0.0))

        return [ScoredKeyword(keyword=kw, confidence=conf) for kw, conf in best.items()]

    def suggest_all(self, paths: List[Path] | None = None) -> SuggestReport:
        """Run ``suggest`` over many notes; one note failing never stops the rest."""
        report = SuggestReport()
        for path in paths if paths is not None else self.orchestrator.get_note_files():
            try:
                note = self.load_note(path)
                suggestions = self.suggest(note)
            except (ExternalServiceError, FilesystemError) as e:
                logger.error(f"Suggestions failed for {path}: {e}")
                report.failures[str(path)] = Outcome.from_error(e)
                continue
            report.suggested[note.path] = [s.keyword for s in suggestions]
        return report

    def review(self, note: Note) -> List[Suggestion]:
        """Pending suggestions of a note, highest confidence first."""
        return self.dictionary.pending_suggestions(note)

    def _get(self, suggestion_id: int) -> Suggestion:
        suggestion = self.dictionary.get_suggestion(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        return suggestion

    def apply(self, suggestion_id: int) -> ApplyResult:
        """Accept a suggestion.

        Adds a self-named rule if the keyword has none, appends the marker to
        the note if missing, marks the suggestion applied and rescans the note
        so the link is materialized right away.

        Raises:
            SuggestionNotFoundError: If no suggestion has this id
            ConfigError: If the keyword cannot be written as a marker; the
                suggestion stays pending
            FilesystemError: If the note cannot be read or updated
        """
        suggestion = self._get(suggestion_id)
        if suggestion.applied:
            logger.warning(f"Suggestion {suggestion_id} was already consumed; nothing to do")
            return ApplyResult(suggestion=suggestion)

        keyword = suggestion.keyword
        if not self.extractor.is_markable(keyword):
            raise ConfigError(f"Keyword {keyword!r} cannot be written as a {{{{keyword}}}} marker")

        note_path = Path(suggestion.note_path)
        try:
            content = note_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FilesystemError(f"Cannot read note {note_path}: {e}") from e

        updated = None
        if not self.extractor.has_marker(self.extractor.normalize(content), keyword):
            updated = self.extractor.append_marker(content, keyword)
            if not self.extractor.has_marker(self.extractor.normalize(updated), keyword):
                # e.g. an unclosed "{{" earlier in the note swallows the new marker
                raise ConfigError(f"Marker {{{{{keyword}}}}} would not be found in {note_path.name}")

        rule_added = False
        if keyword not in self.rule_store.load():
            self.rule_store.add_rule(keyword, keyword)
            rule_added = True

        if updated is not None:
            try:
                note_path.write_text(updated, encoding="utf-8")
            except OSError as e:
                raise FilesystemError(f"Cannot update note {note_path}: {e}") from e
            logger.info(f"Added {{{{{keyword}}}}} to {note_path.name}")

        suggestion = self.dictionary.mark_applied(suggestion_id)
        report = self.orchestrator.scan_note(note_path)
        return ApplyResult(
            suggestion=suggestion,
            rule_added=rule_added,
            marker_added=updated is not None,
            report=report,
        )

    def ignore(self, suggestion_id: int) -> Suggestion:
        """Reject a suggestion; it is consumed without touching rules or notes."""
        suggestion = self._get(suggestion_id)
        if suggestion.applied:
            logger.warning(f"Suggestion {suggestion_id} was already consumed; nothing to do")
            return suggestion
        logger.info(f"Ignoring suggestion {suggestion_id} ({suggestion.keyword})")
        return self.dictionary.mark_applied(suggestion_id)
