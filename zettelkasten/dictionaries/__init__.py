"""Dictionary index backends, selected once at startup."""

from zettelkasten.config import Settings
from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.dictionaries.flat_db import FlatDictionary
from zettelkasten.dictionaries.mirrored_db import MirroredDictionary
from zettelkasten.dictionaries.sqlite_db import SQLiteDictionary


def create_dictionary(settings: Settings, *, allow_damaged: bool = False) -> DictionaryIndex:
    """Build the dictionary backend named by ``settings.backend``.

    ``allow_damaged`` opens an unreadable relational store so it can be
    checked and repaired instead of failing on open.
    """
    if settings.backend == "flat":
        return FlatDictionary(filepath=settings.dictionary_file)

    sqlite_db = SQLiteDictionary(
        settings.database_path,
        backup_dir=settings.backup_dir,
        busy_timeout=settings.busy_timeout_seconds,
        lock_retries=settings.lock_retries,
        lock_backoff=settings.lock_backoff_seconds,
        allow_damaged=allow_damaged,
    )
    if settings.backend == "sqlite":
        return sqlite_db
    return MirroredDictionary(primary=sqlite_db, mirror=FlatDictionary(settings.dictionary_file))


__all__ = [
    "DictionaryIndex",
    "FlatDictionary",
    "MirroredDictionary",
    "SQLiteDictionary",
    "create_dictionary",
]
