from typing import List, Protocol

from zettelkasten.domain.suggestion import ScoredKeyword


class Suggester(Protocol):
    def suggest_keywords(self, text: str) -> List[ScoredKeyword]:
        """Propose keywords for a note's full text."""
        ...
