"""Keyword marker extraction and legacy marker normalization."""

import re

WIKILINK_PATTERN = re.compile(r"\[\[([^\[\]{}]*)\]\]")
URL_MARKER_PATTERN = re.compile(r"\{\{(https?://[^}]*)\}\}")
KEYWORD_PATTERN = re.compile(r"\{\{([^}]*)\}\}")


class KeywordExtractor:
    """Finds ``{{keyword}}`` markers in note text."""

    @staticmethod
    def normalize(content: str) -> str:
        """Rewrite legacy markers so keywords and literal links are unambiguous.

        ``[[x]]`` becomes ``{{x}}`` unless ``x`` is a URL; a ``{{url}}`` marker
        goes back to ``[[url]]``. Applying this twice gives the same text as once.

        Args:
            content: Raw note text

        Returns:
            Normalized note text
        """
        content = WIKILINK_PATTERN.sub(r"{{\1}}", content)
        return URL_MARKER_PATTERN.sub(r"[[\1]]", content)

    @staticmethod
    def extract(content: str) -> set[str]:
        """Extract the keywords marked in note text.

        Args:
            content: Note text, normally already normalized

        Returns:
            Set of keywords, empty if the note carries no markers
        """
        return {m.strip() for m in KEYWORD_PATTERN.findall(content) if m.strip()}

    @classmethod
    def has_marker(cls, content: str, keyword: str) -> bool:
        return keyword in cls.extract(content)

    @classmethod
    def is_markable(cls, keyword: str) -> bool:
        """Whether ``{{keyword}}`` survives normalization and extracts as ``keyword``."""
        return cls.extract(cls.normalize(cls.append_marker("", keyword))) == {keyword}

    @staticmethod
    def append_marker(content: str, keyword: str) -> str:
        separator = "" if not content or content.endswith("\n") else "\n"
        return f"{content}{separator}{{{{{keyword}}}}}\n"
