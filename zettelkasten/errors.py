"""Error taxonomy shared by the indexing engine.

Each error carries the ``OutcomeKind`` it is reported as, so callers can turn
any failure into a structured ``Outcome`` without inspecting the class.
"""

from zettelkasten.domain.report import OutcomeKind


class ZettelError(Exception):
    kind: OutcomeKind = OutcomeKind.CONFIG_ERROR


class ConfigError(ZettelError):
    """Missing or malformed rule/dictionary source or setting."""

    kind = OutcomeKind.CONFIG_ERROR


class MissingDirectoryError(ConfigError):
    pass


class MissingRuleFileError(ConfigError):
    pass


class FilesystemError(ZettelError):
    """Permission problem or missing path while touching the note tree."""

    kind = OutcomeKind.FILESYSTEM_ERROR


class BackendLockedError(ZettelError):
    """The relational store stayed busy after the bounded retries."""

    kind = OutcomeKind.BACKEND_LOCKED


class BackendIntegrityError(ZettelError):
    """The relational store failed an integrity check or rejected a write."""

    kind = OutcomeKind.BACKEND_INTEGRITY

    def __init__(self, message: str, anomalies: list[str] | None = None) -> None:
        super().__init__(message)
        self.anomalies = anomalies or []


class ExternalServiceError(ZettelError):
    """The suggestion endpoint failed or returned an unusable payload."""

    kind = OutcomeKind.EXTERNAL_SERVICE


class DuplicateKeywordError(ZettelError):
    kind = OutcomeKind.DUPLICATE_KEYWORD


class SuggestionNotFoundError(ZettelError):
    kind = OutcomeKind.NOT_FOUND
