"""Tests for symlink materialization under rule folders."""

import os
from pathlib import Path
from typing import Callable

import pytest

from zettelkasten.domain.note import Note
from zettelkasten.domain.rules import RuleSet
from zettelkasten.ingestion.link_materializer import LinkMaterializer
from zettelkasten.ingestion.rule_store import RuleStore


@pytest.fixture
def materializer(rule_store: RuleStore) -> LinkMaterializer:
    return LinkMaterializer(rule_store)


@pytest.fixture
def note(make_note: Callable[..., Path]) -> Note:
    path = make_note("n1.md", "# N1\n{{project}} {{reading}} {{urgent}}\n")
    return Note.from_path(path, content=path.read_text(encoding="utf-8"))


@pytest.fixture
def rules() -> RuleSet:
    return RuleSet.from_pairs([("project", "projects"), ("reading", "library/reading")])


def test_creates_folders_and_links(
    materializer: LinkMaterializer, note: Note, rules: RuleSet, temp_notes_base: Path
) -> None:
    result = materializer.materialize(note, {"project", "reading"}, rules)

    project_link = temp_notes_base / "projects" / "n1.md"
    reading_link = temp_notes_base / "library" / "reading" / "n1.md"
    assert [link.path for link in result.created] == [str(project_link), str(reading_link)]
    assert project_link.is_symlink()
    assert project_link.resolve() == Path(note.path)
    assert reading_link.resolve() == Path(note.path)
    assert result.existing == []
    assert result.failures == {}


def test_materialize_is_idempotent(
    materializer: LinkMaterializer, note: Note, rules: RuleSet
) -> None:
    first = materializer.materialize(note, {"project", "reading"}, rules)
    second = materializer.materialize(note, {"project", "reading"}, rules)

    assert second.created == []
    assert second.links == first.links
    assert [link.keyword for link in second.existing] == ["project", "reading"]


def test_unmapped_keywords_are_reported(
    materializer: LinkMaterializer, note: Note, rules: RuleSet, temp_notes_base: Path
) -> None:
    result = materializer.materialize(note, {"project", "urgent"}, rules)

    assert result.unmapped == ["urgent"]
    assert [link.keyword for link in result.created] == ["project"]
    assert not (temp_notes_base / "urgent").exists()


def test_occupied_path_is_a_conflict(
    materializer: LinkMaterializer, note: Note, rules: RuleSet, temp_notes_base: Path
) -> None:
    folder = temp_notes_base / "projects"
    folder.mkdir()
    (folder / "n1.md").write_text("someone else's file", encoding="utf-8")

    result = materializer.materialize(note, {"project"}, rules)

    assert result.conflicts == [str(folder / "n1.md")]
    assert result.links == []
    assert (folder / "n1.md").read_text(encoding="utf-8") == "someone else's file"


def test_link_to_another_note_is_a_conflict(
    materializer: LinkMaterializer,
    note: Note,
    rules: RuleSet,
    make_note: Callable[..., Path],
    temp_notes_base: Path,
) -> None:
    other = make_note("n1.md", "{{project}}", folder=temp_notes_base / "elsewhere")
    folder = temp_notes_base / "projects"
    folder.mkdir()
    os.symlink(other, folder / "n1.md")

    result = materializer.materialize(note, {"project"}, rules)

    assert result.conflicts == [str(folder / "n1.md")]
    assert (folder / "n1.md").resolve() == other


def test_failure_on_one_keyword_does_not_stop_others(
    materializer: LinkMaterializer, note: Note, temp_notes_base: Path
) -> None:
    (temp_notes_base / "blocked").write_text("a file where a folder should be", encoding="utf-8")
    rules = RuleSet.from_pairs([("project", "projects"), ("reading", "blocked")])

    result = materializer.materialize(note, {"project", "reading"}, rules)

    assert list(result.failures) == ["reading"]
    assert [link.keyword for link in result.created] == ["project"]
    assert (temp_notes_base / "projects" / "n1.md").is_symlink()
