"""Tests for the scan orchestrator across every dictionary backend."""

import sqlite3
import threading
from pathlib import Path
from typing import Callable

import pytest

from zettelkasten.config import Settings
from zettelkasten.dictionaries import (
    DictionaryIndex,
    FlatDictionary,
    MirroredDictionary,
    create_dictionary,
)
from zettelkasten.domain.note import Note
from zettelkasten.domain.report import OutcomeKind, RunState
from zettelkasten.ingestion.orchestrator import ScanOrchestrator
from zettelkasten.ingestion.rule_store import RuleStore


def test_scan_creates_link_and_entry(
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    make_note: Callable[..., Path],
    temp_notes_base: Path,
) -> None:
    note_path = make_note("n1.md", "# N1\nWork on {{project}}\n")

    report = orchestrator.run()

    link = temp_notes_base / "projects" / "n1.md"
    assert report.committed
    assert report.state == RunState.IDLE
    assert report.outcome.ok
    assert report.created_links == [str(link)]
    assert link.is_symlink()
    assert link.resolve() == note_path

    entry = dictionary.lookup(Note.from_path(note_path))
    assert entry is not None
    assert entry.paths == [str(note_path), str(link)]


def test_rescan_creates_nothing_and_keeps_entry(
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    make_note: Callable[..., Path],
) -> None:
    note_path = make_note("n1.md", "# N1\nWork on {{project}}\n")
    orchestrator.run()
    entry_before = dictionary.lookup(Note.from_path(note_path))

    report = orchestrator.run()

    assert report.committed
    assert report.created_links == []
    assert dictionary.lookup(Note.from_path(note_path)) == entry_before


def test_rescan_leaves_flat_dictionary_byte_identical(
    notes_directory: Path,
    rule_store: RuleStore,
    flat_dictionary: FlatDictionary,
    make_note: Callable[..., Path],
) -> None:
    make_note("n1.md", "{{project}}\n")
    orchestrator = ScanOrchestrator(
        notes_dir=notes_directory, rule_store=rule_store, dictionary=flat_dictionary
    )
    orchestrator.run()
    before = flat_dictionary.filepath.read_bytes()

    orchestrator.run()

    assert flat_dictionary.filepath.read_bytes() == before


def test_unmapped_keyword_is_reported(
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    make_note: Callable[..., Path],
    temp_notes_base: Path,
) -> None:
    note_path = make_note("n1.md", "{{urgent}} and {{project}}\n")

    report = orchestrator.run()

    assert report.committed
    assert report.unmapped == {str(note_path): ["urgent"]}
    assert not (temp_notes_base / "urgent").exists()
    assert dictionary.lookup(Note.from_path(note_path)).link_paths == [
        str(temp_notes_base / "projects" / "n1.md")
    ]


def test_note_without_keywords_gets_entry(
    orchestrator: ScanOrchestrator, dictionary: DictionaryIndex, make_note: Callable[..., Path]
) -> None:
    note_path = make_note("plain.md", "Nothing to file here\n")

    orchestrator.run()

    assert dictionary.lookup(Note.from_path(note_path)).paths == [str(note_path)]


def test_legacy_markers_are_normalized_in_place(
    orchestrator: ScanOrchestrator, make_note: Callable[..., Path], temp_notes_base: Path
) -> None:
    note_path = make_note("n1.md", "See [[project]] and [[https://example.com]]\n")

    orchestrator.run()

    assert note_path.read_text(encoding="utf-8") == "See {{project}} and [[https://example.com]]\n"
    assert (temp_notes_base / "projects" / "n1.md").is_symlink()


def test_org_notes_are_indexed_and_symlinks_skipped(
    orchestrator: ScanOrchestrator,
    make_note: Callable[..., Path],
    notes_directory: Path,
) -> None:
    org = make_note("n2.org", "* Heading\n{{project}}\n", folder=notes_directory / "sub")
    md = make_note("n1.md", "{{project}}\n")
    make_note("image.png", "not a note")
    (notes_directory / "alias.md").symlink_to(md)

    assert orchestrator.get_note_files() == [md, org]


def test_failing_note_does_not_stop_the_run(
    orchestrator: ScanOrchestrator,
    make_note: Callable[..., Path],
    notes_directory: Path,
    temp_notes_base: Path,
) -> None:
    bad = notes_directory / "a_bad.md"
    bad.write_bytes(b"\xff\xfe{{project}}")
    make_note("b_good.md", "{{project}}\n")

    report = orchestrator.run()

    assert report.committed
    assert [n.outcome.kind for n in report.notes] == [
        OutcomeKind.FILESYSTEM_ERROR,
        OutcomeKind.SUCCESS,
    ]
    assert [n.path for n in report.failures] == [str(bad)]
    assert (temp_notes_base / "projects" / "b_good.md").is_symlink()


def test_missing_originals_directory(
    rule_store: RuleStore, dictionary: DictionaryIndex, temp_notes_base: Path
) -> None:
    orchestrator = ScanOrchestrator(
        notes_dir=temp_notes_base / "missing", rule_store=rule_store, dictionary=dictionary
    )

    report = orchestrator.run()

    assert report.state == RunState.FAILED
    assert report.outcome.kind == OutcomeKind.CONFIG_ERROR
    assert not report.committed
    assert orchestrator.state == RunState.FAILED


def test_missing_rules_file(
    orchestrator: ScanOrchestrator, rules_file: Path, make_note: Callable[..., Path]
) -> None:
    make_note("n1.md", "{{project}}\n")
    rules_file.unlink()

    report = orchestrator.run()

    assert report.state == RunState.FAILED
    assert report.outcome.kind == OutcomeKind.CONFIG_ERROR
    assert report.notes == []


def test_empty_originals_directory(orchestrator: ScanOrchestrator) -> None:
    report = orchestrator.run()

    assert report.committed
    assert report.notes == []


def test_cancelled_run_commits_processed_notes(
    orchestrator: ScanOrchestrator, make_note: Callable[..., Path]
) -> None:
    make_note("n1.md", "{{project}}\n")
    cancel = threading.Event()
    cancel.set()

    report = orchestrator.run(cancel_event=cancel)

    assert report.cancelled
    assert report.committed
    assert report.outcome.kind == OutcomeKind.CANCELLED
    assert report.notes == []


def test_scan_note_indexes_single_note(
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    make_note: Callable[..., Path],
) -> None:
    first = make_note("n1.md", "{{project}}\n")
    second = make_note("n2.md", "{{project}}\n")

    report = orchestrator.scan_note(second)

    assert [n.path for n in report.notes] == [str(second)]
    assert dictionary.lookup(Note.from_path(first)) is None
    assert dictionary.lookup(Note.from_path(second)) is not None


def test_dictionary_matches_materialized_links(
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    rules_file: Path,
    make_note: Callable[..., Path],
) -> None:
    rules_file.write_text("project: projects\nreading: reading\n", encoding="utf-8")
    make_note("n1.md", "{{project}} {{reading}}\n")
    make_note("n2.md", "{{reading}}\n")

    report = orchestrator.run()

    for outcome in report.notes:
        entry = dictionary.lookup(Note.from_path(Path(outcome.path)))
        assert entry.link_paths == outcome.link_paths
        for link_path in entry.link_paths:
            assert Path(link_path).resolve() == Path(outcome.path)


def test_commit_failure_marks_backends_out_of_sync(
    settings: Settings,
    rule_store: RuleStore,
    notes_directory: Path,
    make_note: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    dictionary = create_dictionary(settings.model_copy(update={"backend": "mirrored"}))
    assert isinstance(dictionary, MirroredDictionary)
    orchestrator = ScanOrchestrator(
        notes_dir=notes_directory, rule_store=rule_store, dictionary=dictionary
    )
    note_path = make_note("n1.md", "{{project}}\n")

    def failing_commit() -> None:
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(dictionary.primary, "_commit", failing_commit)
    report = orchestrator.run()

    assert report.state == RunState.FAILED
    assert report.outcome.kind == OutcomeKind.BACKEND_INTEGRITY
    assert not report.committed
    assert not report.backends_in_sync
    assert dictionary.primary.entries() == []
    assert [e.canonical_path for e in dictionary.mirror.entries()] == [str(note_path)]

    monkeypatch.undo()
    report = orchestrator.run()

    assert report.committed
    assert report.backends_in_sync
    assert [e.paths for e in dictionary.primary.entries()] == [
        e.paths for e in dictionary.mirror.entries()
    ]
    dictionary.close()


def test_unreadable_flat_dictionary_fails_the_run(
    notes_directory: Path,
    rule_store: RuleStore,
    make_note: Callable[..., Path],
    temp_notes_base: Path,
) -> None:
    make_note("n1.md", "{{project}}\n")
    dictionary_path = temp_notes_base / "dictionary.yml"
    dictionary_path.mkdir()
    orchestrator = ScanOrchestrator(
        notes_dir=notes_directory, rule_store=rule_store, dictionary=FlatDictionary(dictionary_path)
    )

    report = orchestrator.run()

    assert report.state == RunState.FAILED
    assert report.outcome.kind == OutcomeKind.CONFIG_ERROR
    assert not report.committed


def test_unwritable_flat_mirror_rolls_back_the_batch(
    settings: Settings,
    notes_directory: Path,
    rule_store: RuleStore,
    make_note: Callable[..., Path],
    temp_notes_base: Path,
) -> None:
    make_note("n1.md", "{{project}}\n")
    blocker = temp_notes_base / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    mirrored = create_dictionary(
        settings.model_copy(
            update={"backend": "mirrored", "dictionary_file": blocker / "dictionary.yml"}
        )
    )
    try:
        orchestrator = ScanOrchestrator(
            notes_dir=notes_directory, rule_store=rule_store, dictionary=mirrored
        )

        report = orchestrator.run()

        assert report.state == RunState.FAILED
        assert report.outcome.kind == OutcomeKind.FILESYSTEM_ERROR
        assert report.backends_in_sync
        assert mirrored.entries() == []
    finally:
        mirrored.close()
