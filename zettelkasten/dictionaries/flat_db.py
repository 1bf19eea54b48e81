import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from loguru import logger

from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.domain.note import DictionaryEntry, Link, Note
from zettelkasten.domain.report import RepairReport
from zettelkasten.domain.rules import RuleSet
from zettelkasten.domain.suggestion import ScoredKeyword, Suggestion
from zettelkasten.errors import ConfigError, FilesystemError, SuggestionNotFoundError

DICTIONARY_HEADER = """# Zettelkasten dictionary file
# Format: filename: [original_path, symlink1, symlink2, ...]
"""

ENTRY_SEPARATOR = ": ["


def format_entry(entry: DictionaryEntry) -> str:
    return f"{entry.filename}: {json.dumps(entry.paths, ensure_ascii=False)}"


def parse_entry(line: str) -> DictionaryEntry | None:
    """Parse one ``filename: [original, link, ...]`` line, None if malformed."""
    index = line.find(ENTRY_SEPARATOR)
    if index <= 0:
        return None
    filename = line[:index]
    try:
        paths = json.loads(line[index + 2 :])
    except json.JSONDecodeError:
        return None
    if not paths or not all(isinstance(p, str) for p in paths):
        return None

    canonical, *link_paths = paths
    return DictionaryEntry(
        filename=filename,
        canonical_path=canonical,
        links=[Link(note_path=canonical, path=p) for p in link_paths],
    )


class FlatDictionary(DictionaryIndex):
    """Dictionary kept in a line-oriented text file, one line per note.

    Entries are keyed by filename and replaced in place on rescan. Every
    ``upsert`` rewrites the file immediately, so there is nothing to commit or
    roll back. Suggestions are kept in a JSON file next to the dictionary.
    """

    in_sync = True

    def __init__(self, filepath: str | Path, suggestions_path: str | Path | None = None) -> None:
        self._filepath = Path(filepath)
        self._suggestions_path = (
            Path(suggestions_path)
            if suggestions_path
            else self._filepath.with_name(f"{self._filepath.name}.suggestions.json")
        )

    @property
    def filepath(self) -> Path:
        return self._filepath

    def initialize(self) -> bool:
        """Write the dictionary header if the file does not exist yet."""
        if self._filepath.exists():
            return False
        self._filepath.parent.mkdir(parents=True, exist_ok=True)
        self._filepath.write_text(DICTIONARY_HEADER, encoding="utf-8")
        logger.info(f"Created {self._filepath}")
        return True

    def _read_lines(self) -> list[str]:
        if not self._filepath.exists():
            return DICTIONARY_HEADER.splitlines()
        try:
            return self._filepath.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Cannot read dictionary {self._filepath}: {e}") from e

    def _write_lines(self, lines: list[str]) -> None:
        tmp_path = self._filepath.with_name(f".{self._filepath.name}.tmp")
        try:
            tmp_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
            os.replace(tmp_path, self._filepath)
        except OSError as e:
            raise FilesystemError(f"Cannot write dictionary {self._filepath}: {e}") from e

    def upsert(self, entry: DictionaryEntry) -> None:
        """Replace the line of the entry's filename in place, or append it."""
        new_line = format_entry(entry)
        lines = self._read_lines()
        prefix = f"{entry.filename}{ENTRY_SEPARATOR}"

        for i, line in enumerate(lines):
            if line.startswith(prefix):
                if line == new_line:
                    return
                previous = parse_entry(line)
                if previous and previous.canonical_path != entry.canonical_path:
                    logger.warning(
                        f"Dictionary entry {entry.filename} moves from "
                        f"{previous.canonical_path} to {entry.canonical_path}"
                    )
                lines[i] = new_line
                break
        else:
            lines.append(new_line)

        self._write_lines(lines)

    def lookup(self, note: Note) -> DictionaryEntry | None:
        prefix = f"{note.filename}{ENTRY_SEPARATOR}"
        for line in self._read_lines():
            if line.startswith(prefix):
                entry = parse_entry(line)
                if entry and entry.canonical_path == note.path:
                    return entry
        return None

    def entries(self) -> List[DictionaryEntry]:
        entries = []
        for line in self._read_lines():
            if not line.strip() or line.startswith("#"):
                continue
            entry = parse_entry(line)
            if entry:
                entries.append(entry)
        return entries

    @contextmanager
    def batch(self) -> Iterator[None]:
        yield

    def sync_rules(self, rules: RuleSet) -> None:
        pass

    def integrity_check(self) -> List[str]:
        """Report lines that are neither comments nor well-formed entries."""
        anomalies = []
        for lineno, line in enumerate(self._read_lines(), start=1):
            if not line.strip() or line.startswith("#"):
                continue
            if parse_entry(line) is None:
                anomalies.append(f"line {lineno}: malformed entry {line!r}")
        return anomalies

    def repair(self) -> RepairReport:
        raise ConfigError("Repair is only supported by the relational dictionary backend")

    def _load_suggestions(self) -> dict:
        if not self._suggestions_path.exists():
            return {"next_id": 1, "suggestions": {}}
        try:
            with open(self._suggestions_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Cannot read suggestions {self._suggestions_path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Malformed suggestions file {self._suggestions_path}: {e}") from e
        if not isinstance(data, dict) or "next_id" not in data or "suggestions" not in data:
            raise ConfigError(f"Malformed suggestions file {self._suggestions_path}")
        return data

    def _save_suggestions(self, data: dict) -> None:
        try:
            with open(self._suggestions_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise FilesystemError(f"Cannot write suggestions {self._suggestions_path}: {e}") from e

    def add_suggestions(self, note: Note, keywords: List[ScoredKeyword]) -> List[Suggestion]:
        data = self._load_suggestions()
        created = []
        for scored in keywords:
            suggestion = Suggestion(
                id=data["next_id"],
                note_path=note.path,
                keyword=scored.keyword,
                confidence=scored.confidence,
            )
            data["suggestions"][str(suggestion.id)] = suggestion.model_dump()
            data["next_id"] += 1
            created.append(suggestion)
        self._save_suggestions(data)
        return created

    def get_suggestion(self, suggestion_id: int) -> Suggestion | None:
        raw = self._load_suggestions()["suggestions"].get(str(suggestion_id))
        return Suggestion(**raw) if raw else None

    def note_suggestions(self, note: Note) -> List[Suggestion]:
        return [
            Suggestion(**raw)
            for raw in self._load_suggestions()["suggestions"].values()
            if raw["note_path"] == note.path
        ]

    def pending_suggestions(self, note: Note) -> List[Suggestion]:
        suggestions = [s for s in self.note_suggestions(note) if not s.applied]
        return sorted(suggestions, key=lambda s: (-s.confidence, s.id))

    def mark_applied(self, suggestion_id: int) -> Suggestion:
        data = self._load_suggestions()
        raw = data["suggestions"].get(str(suggestion_id))
        if raw is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        raw["applied"] = True
        self._save_suggestions(data)
        return Suggestion(**raw)

    def close(self) -> None:
        pass
