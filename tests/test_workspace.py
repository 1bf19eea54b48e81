"""Tests for workspace bootstrap and note creation."""

from datetime import datetime
from pathlib import Path

import pytest

from zettelkasten.config import Settings
from zettelkasten.dictionaries.flat_db import DICTIONARY_HEADER
from zettelkasten.errors import FilesystemError
from zettelkasten.ingestion.workspace import initialize, new_note, safe_title

NOW = datetime(2024, 3, 5, 14, 7, 9)


@pytest.fixture
def fresh_settings(temp_notes_base: Path) -> Settings:
    return Settings(
        _env_file=None,
        originals_dir=temp_notes_base / "fresh" / "originals",
        rules_file=temp_notes_base / "fresh" / "rules.yml",
        dictionary_file=temp_notes_base / "fresh" / "dictionary.yml",
        links_dir=temp_notes_base / "fresh",
    )


def test_initialize_creates_workspace(fresh_settings: Settings) -> None:
    created = initialize(fresh_settings)

    assert created == [
        fresh_settings.originals_dir,
        fresh_settings.rules_file,
        fresh_settings.dictionary_file,
    ]
    assert fresh_settings.originals_dir.is_dir()
    assert "keyword1: folder1" in fresh_settings.rules_file.read_text(encoding="utf-8")
    assert fresh_settings.dictionary_file.read_text(encoding="utf-8") == DICTIONARY_HEADER


def test_initialize_is_idempotent(fresh_settings: Settings) -> None:
    initialize(fresh_settings)
    fresh_settings.rules_file.write_text("project: projects\n", encoding="utf-8")

    assert initialize(fresh_settings) == []
    assert fresh_settings.rules_file.read_text(encoding="utf-8") == "project: projects\n"


def test_initialize_sqlite_skips_flat_file(fresh_settings: Settings) -> None:
    initialize(fresh_settings.model_copy(update={"backend": "sqlite"}))

    assert not fresh_settings.dictionary_file.exists()


def test_new_note(settings: Settings) -> None:
    path = new_note(settings, "My first idea!", now=NOW)

    content = path.read_text(encoding="utf-8")
    assert path == settings.originals_dir / "My_first_idea_2024-03-05_14-07-09.md"
    assert content.startswith("---\ntitle: My first idea!\ndate: 2024-03-05\n")
    assert "open_timestamp: 2024-03-05 14:07:09" in content
    assert "# My first idea!" in content
    assert "## Keywords" in content


def test_new_note_without_title(settings: Settings) -> None:
    path = new_note(settings, "   ", now=NOW)

    assert path.name == "Untitled_Note_2024-03-05_14-07-09.md"


def test_new_note_never_overwrites(settings: Settings) -> None:
    new_note(settings, "Idea", now=NOW)

    with pytest.raises(FilesystemError):
        new_note(settings, "Idea", now=NOW)


@pytest.mark.parametrize(
    "title,expected",
    [("Plain", "Plain"), ("two words", "two_words"), ("a/b: c?", "ab_c"), ("dash-ok", "dash-ok")],
)
def test_safe_title(title: str, expected: str) -> None:
    assert safe_title(title) == expected
