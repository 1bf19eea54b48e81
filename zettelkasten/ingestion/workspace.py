"""Workspace bootstrap and new-note creation."""

import re
from datetime import datetime
from pathlib import Path

from loguru import logger

from zettelkasten.config import Settings
from zettelkasten.dictionaries.flat_db import FlatDictionary
from zettelkasten.errors import FilesystemError

from .rule_store import RuleStore

NOTE_TEMPLATE = """---
title: {title}
date: {date}
open_timestamp: {opened}
save_timestamp:
tags: []
---
# {title}

## Keywords
(enclose keywords in double curly braces)

"""


def initialize(settings: Settings) -> list[Path]:
    """Create the originals directory, an example rule file and the dictionary file.

    Existing files are left alone.

    Returns:
        Paths that were created
    """
    created = []
    if not settings.originals_dir.is_dir():
        settings.originals_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created originals directory {settings.originals_dir}")
        created.append(settings.originals_dir)

    if RuleStore(settings.rules_file, links_dir=settings.links_dir).write_template():
        created.append(settings.rules_file)

    if settings.backend != "sqlite" and FlatDictionary(settings.dictionary_file).initialize():
        created.append(settings.dictionary_file)

    return created


def safe_title(title: str) -> str:
    return re.sub(r"[^\w-]", "", title.strip().replace(" ", "_"), flags=re.ASCII)


def new_note(settings: Settings, title: str, now: datetime | None = None) -> Path:
    """Write a new note from the template into the originals directory.

    Args:
        settings: Settings naming the originals directory
        title: Note title; ``Untitled_Note`` when blank
        now: Timestamp to stamp the note with, current time if omitted

    Returns:
        Path of the created note
    """
    now = now or datetime.now()
    title = title.strip() or "Untitled_Note"
    filename = f"{safe_title(title) or 'Untitled_Note'}_{now:%Y-%m-%d_%H-%M-%S}.md"

    settings.originals_dir.mkdir(parents=True, exist_ok=True)
    path = settings.originals_dir / filename
    if path.exists():
        raise FilesystemError(f"Note already exists: {path}")

    path.write_text(
        NOTE_TEMPLATE.format(
            title=title, date=f"{now:%Y-%m-%d}", opened=f"{now:%Y-%m-%d %H:%M:%S}"
        ),
        encoding="utf-8",
    )
    logger.info(f"Created note {path}")
    return path
