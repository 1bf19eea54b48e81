"""Suggestion domain models."""

from pydantic import BaseModel, Field

from zettelkasten.domain.report import RunReport


class ScoredKeyword(BaseModel):
    """A keyword proposed by the suggestion service.

    ``confidence`` is None when the service returned a bare keyword; the
    pipeline then applies the configured default.
    """

    keyword: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class Suggestion(BaseModel):
    id: int
    note_path: str
    keyword: str
    confidence: float = Field(ge=0.0, le=1.0)
    applied: bool = False


class ApplyResult(BaseModel):
    """Result of applying a suggestion.

    ``report`` is None when the suggestion had already been consumed and
    nothing was done.
    """

    suggestion: Suggestion
    rule_added: bool = False
    marker_added: bool = False
    report: RunReport | None = None
