"""Keyword routing rules."""

from pydantic import BaseModel


class Rule(BaseModel):
    keyword: str
    folder: str


class RuleSet(BaseModel):
    """Ordered keyword to folder routing table, keyed by keyword."""

    rules: dict[str, Rule] = {}

    def __contains__(self, keyword: object) -> bool:
        return keyword in self.rules

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, keyword: str) -> Rule | None:
        return self.rules.get(keyword)

    @property
    def keywords(self) -> list[str]:
        return list(self.rules)

    @classmethod
    def from_pairs(cls, pairs: list[tuple[str, str]]) -> "RuleSet":
        return cls(rules={kw: Rule(keyword=kw, folder=folder) for kw, folder in pairs})
