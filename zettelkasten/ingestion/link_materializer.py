"""Materialize keyword membership as symlinks under rule folders."""

import os
from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from zettelkasten.domain.note import Link, Note
from zettelkasten.domain.rules import RuleSet
from zettelkasten.errors import FilesystemError
from zettelkasten.ingestion.rule_store import RuleStore


class MaterializeResult(BaseModel):
    """Outcome of materializing one note.

    Attributes:
        created: Links created by this call
        existing: Links that were already in place and point at the note
        unmapped: Keywords with no routing rule
        conflicts: Paths occupied by a file or a link to something else
        failures: Keyword to error message for folders/links that could not be made
    """

    created: list[Link] = []
    existing: list[Link] = []
    unmapped: list[str] = []
    conflicts: list[str] = []
    failures: dict[str, str] = {}

    @property
    def links(self) -> list[Link]:
        """All links of the note currently in place, in keyword order."""
        return sorted(self.created + self.existing, key=lambda link: link.keyword or "")


class LinkMaterializer:
    """Creates one link per (note, routed keyword).

    Filesystem mutations are at-least-effort: a failure on one keyword is
    collected and the remaining keywords are still processed; links created
    before the failure stay in place.
    """

    def __init__(self, rule_store: RuleStore):
        self.rule_store = rule_store

    def materialize(self, note: Note, keywords: set[str], rules: RuleSet) -> MaterializeResult:
        result = MaterializeResult()
        target = Path(note.path)

        for keyword in sorted(keywords):
            rule = rules.get(keyword)
            if rule is None:
                logger.warning(f"Keyword '{keyword}' not found in rules for file {note.filename}")
                result.unmapped.append(keyword)
                continue

            folder = self.rule_store.folder_path(rule)
            link_path = folder / note.filename
            try:
                self._ensure_folder(folder)
                if self._exists(link_path):
                    if self._points_to(link_path, target):
                        logger.debug(f"Link already exists: {link_path}")
                        result.existing.append(
                            Link(note_path=note.path, keyword=keyword, path=str(link_path))
                        )
                    else:
                        logger.warning(f"Path occupied, leaving untouched: {link_path}")
                        result.conflicts.append(str(link_path))
                    continue

                self._create_link(link_path, target)
            except FilesystemError as e:
                logger.error(f"Could not materialize '{keyword}' for {note.filename}: {e}")
                result.failures[keyword] = str(e)
                continue

            logger.info(f"Created symlink: {link_path}")
            result.created.append(Link(note_path=note.path, keyword=keyword, path=str(link_path)))

        return result

    @staticmethod
    def _exists(path: Path) -> bool:
        # is_symlink catches dangling links that exists() reports as absent
        return path.is_symlink() or path.exists()

    @staticmethod
    def _points_to(link_path: Path, target: Path) -> bool:
        if not link_path.is_symlink():
            return False
        try:
            return link_path.resolve() == target.resolve()
        except OSError:
            return False

    @staticmethod
    def _ensure_folder(folder: Path) -> None:
        if folder.is_dir():
            return
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create folder {folder}: {e}") from e
        logger.info(f"Created folder: {folder}")

    @staticmethod
    def _create_link(link_path: Path, target: Path) -> None:
        try:
            os.symlink(target, link_path)
        except OSError as e:
            raise FilesystemError(f"Cannot create link {link_path}: {e}") from e
