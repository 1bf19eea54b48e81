import sys
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from loguru import logger

from zettelkasten.api import create_app
from zettelkasten.config import Settings
from zettelkasten.dictionaries import (
    DictionaryIndex,
    FlatDictionary,
    SQLiteDictionary,
    create_dictionary,
)
from zettelkasten.domain.suggestion import ScoredKeyword
from zettelkasten.ingestion.orchestrator import ScanOrchestrator
from zettelkasten.ingestion.rule_store import RuleStore
from zettelkasten.suggestions.pipeline import SuggestionPipeline
from tests.fakes import FakeSuggester


@pytest.fixture
def temp_notes_base() -> Generator[Path, None, None]:
    """Create a temporary workspace holding notes, rules, links and dictionaries."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def notes_directory(temp_notes_base: Path) -> Path:
    """Create the originals subdirectory."""
    notes_dir = temp_notes_base / "originals"
    notes_dir.mkdir()
    return notes_dir


@pytest.fixture
def rules_file(temp_notes_base: Path) -> Path:
    path = temp_notes_base / "rules.yml"
    path.write_text("# Format: keyword: folder\nproject: projects\n", encoding="utf-8")
    return path


@pytest.fixture
def rule_store(rules_file: Path, temp_notes_base: Path) -> RuleStore:
    return RuleStore(rules_file, links_dir=temp_notes_base)


@pytest.fixture
def make_note(notes_directory: Path) -> Callable[..., Path]:
    """Write a note into the originals directory and return its path."""

    def _make_note(name: str, content: str, folder: Path | None = None) -> Path:
        path = (folder or notes_directory) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _make_note


@pytest.fixture
def settings(temp_notes_base: Path, notes_directory: Path, rules_file: Path) -> Settings:
    return Settings(
        _env_file=None,
        originals_dir=notes_directory,
        rules_file=rules_file,
        links_dir=temp_notes_base,
        dictionary_file=temp_notes_base / "dictionary.yml",
        database_path=temp_notes_base / "zettelkasten.db",
        backup_dir=temp_notes_base / "backups",
        log_file=temp_notes_base / "zettelkasten.log",
        lock_retries=2,
        lock_backoff_seconds=0.0,
        busy_timeout_seconds=0.0,
        auth_username="admin",
        auth_password="password",
    )


@pytest.fixture
def flat_dictionary(settings: Settings) -> FlatDictionary:
    dictionary = FlatDictionary(settings.dictionary_file)
    dictionary.initialize()
    return dictionary


@pytest.fixture
def sqlite_dictionary(settings: Settings) -> Generator[SQLiteDictionary, None, None]:
    dictionary = SQLiteDictionary(
        settings.database_path,
        backup_dir=settings.backup_dir,
        busy_timeout=settings.busy_timeout_seconds,
        lock_retries=settings.lock_retries,
        lock_backoff=settings.lock_backoff_seconds,
    )
    yield dictionary
    dictionary.close()


@pytest.fixture(params=["flat", "sqlite", "mirrored"])
def dictionary(request: pytest.FixtureRequest, settings: Settings) -> Generator[DictionaryIndex, None, None]:
    """Every dictionary backend, built the way the entry points build them."""
    dictionary = create_dictionary(settings.model_copy(update={"backend": request.param}))
    yield dictionary
    dictionary.close()


@pytest.fixture
def orchestrator(
    notes_directory: Path, rule_store: RuleStore, dictionary: DictionaryIndex
) -> ScanOrchestrator:
    return ScanOrchestrator(notes_dir=notes_directory, rule_store=rule_store, dictionary=dictionary)


@pytest.fixture
def fake_suggester() -> FakeSuggester:
    return FakeSuggester(keywords=[ScoredKeyword(keyword="reading", confidence=0.82)])


@pytest.fixture
def pipeline(
    fake_suggester: FakeSuggester, dictionary: DictionaryIndex, orchestrator: ScanOrchestrator
) -> SuggestionPipeline:
    return SuggestionPipeline(
        suggester=fake_suggester, dictionary=dictionary, orchestrator=orchestrator
    )


@pytest.fixture
def test_client(
    settings: Settings,
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    pipeline: SuggestionPipeline,
) -> TestClient:
    """Create test client with fake implementations."""
    app = create_app(
        settings=settings, orchestrator=orchestrator, dictionary=dictionary, pipeline=pipeline
    )
    return TestClient(app)


@pytest.fixture
def restore_logger() -> Generator[None, None, None]:
    """Put loguru back to its default sink after a test reconfigured it."""
    yield
    logger.remove()
    logger.add(sys.stderr)
