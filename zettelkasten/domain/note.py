"""Note domain models."""

from pathlib import Path

from pydantic import BaseModel

NOTE_SUFFIXES = (".md", ".org")


class Note(BaseModel):
    """Represents a single note file.

    Attributes:
        path: Canonical (resolved, absolute) file path
        filename: Base name of the file, not unique across directories
        content: Note text after marker normalization
        keywords: Keywords extracted from the content
    """

    path: str
    filename: str
    content: str = ""
    keywords: list[str] = []

    @classmethod
    def from_path(cls, path: Path, content: str = "") -> "Note":
        resolved = path.resolve()
        return cls(path=str(resolved), filename=resolved.name, content=content)


class Link(BaseModel):
    """A symlink materializing a note under a keyword folder."""

    note_path: str
    keyword: str | None = None  # unknown when read back from the flat dictionary
    path: str


class DictionaryEntry(BaseModel):
    """Persisted record of a note and the links generated for it."""

    filename: str
    canonical_path: str
    links: list[Link] = []

    @property
    def link_paths(self) -> list[str]:
        return [link.path for link in self.links]

    @property
    def paths(self) -> list[str]:
        return [self.canonical_path, *self.link_paths]
