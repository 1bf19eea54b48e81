from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from zettelkasten.api.auth import get_credentials_verifier
from zettelkasten.config import Settings
from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.domain.note import Note
from zettelkasten.errors import (
    ConfigError,
    DuplicateKeywordError,
    ExternalServiceError,
    FilesystemError,
    SuggestionNotFoundError,
    ZettelError,
)
from zettelkasten.ingestion.orchestrator import ScanOrchestrator
from zettelkasten.suggestions.pipeline import SuggestionPipeline

ERROR_STATUS = {
    SuggestionNotFoundError: 404,
    DuplicateKeywordError: 409,
    ConfigError: 400,
    FilesystemError: 500,
    ExternalServiceError: 502,
}


def to_http_error(error: ZettelError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def _find_notes(orchestrator: ScanOrchestrator, filename: str) -> list[Path]:
    """Note files with the given base name; names may repeat across directories."""
    return [p for p in orchestrator.get_note_files() if p.name == filename]


def get_endpoints_router(
    *,
    settings: Settings,
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    pipeline: SuggestionPipeline | None = None,
) -> APIRouter:
    router = APIRouter()
    verify_credentials = get_credentials_verifier(settings)

    def require_pipeline() -> SuggestionPipeline:
        if pipeline is None:
            raise HTTPException(status_code=503, detail="Keyword suggestions are not configured")
        return pipeline

    @router.get("/health")
    def health() -> dict:
        return {"status": "ok", "backend": settings.backend, "in_sync": dictionary.in_sync}

    @router.get("/api/keywords")
    def list_keywords(_: str = Depends(verify_credentials)) -> dict:
        try:
            rules = orchestrator.rule_store.load()
        except ConfigError as e:
            raise to_http_error(e) from e
        return {kw: rule.folder for kw, rule in rules.rules.items()}

    @router.get("/api/keywords/{keyword}/notes")
    def browse_keyword(keyword: str, _: str = Depends(verify_credentials)) -> list[str]:
        try:
            return [str(p) for p in orchestrator.rule_store.browse(keyword)]
        except ConfigError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    def read_entries() -> list:
        try:
            return dictionary.entries()
        except ZettelError as e:
            logger.error(f"Reading the dictionary failed: {e}")
            raise to_http_error(e) from e

    @router.get("/api/dictionary")
    def list_entries(_: str = Depends(verify_credentials)) -> list[dict]:
        return [entry.model_dump() for entry in read_entries()]

    @router.get("/api/dictionary/{filename}")
    def get_entries(filename: str, _: str = Depends(verify_credentials)) -> list[dict]:
        entries = [entry for entry in read_entries() if entry.filename == filename]
        if not entries:
            raise HTTPException(status_code=404, detail=f"No dictionary entry for {filename}")
        return [entry.model_dump() for entry in entries]

    @router.get("/api/notes/{filename}/suggestions")
    def review_suggestions(
        filename: str,
        _: str = Depends(verify_credentials),
        active: SuggestionPipeline = Depends(require_pipeline),  # noqa: B008
    ) -> list[dict]:
        paths = _find_notes(orchestrator, filename)
        if not paths:
            raise HTTPException(status_code=404, detail=f"Note not found: {filename}")
        return [
            suggestion.model_dump()
            for path in paths
            for suggestion in active.review(Note.from_path(path))
        ]

    @router.post("/api/notes/{filename}/suggestions")
    def request_suggestions(
        filename: str,
        _: str = Depends(verify_credentials),
        active: SuggestionPipeline = Depends(require_pipeline),  # noqa: B008
    ) -> list[dict]:
        paths = _find_notes(orchestrator, filename)
        if not paths:
            raise HTTPException(status_code=404, detail=f"Note not found: {filename}")
        try:
            return [
                suggestion.model_dump()
                for path in paths
                for suggestion in active.suggest(active.load_note(path))
            ]
        except ZettelError as e:
            logger.error(f"Suggestion request for {filename} failed: {e}")
            raise to_http_error(e) from e

    @router.post("/api/suggestions/{suggestion_id}/apply")
    def apply_suggestion(
        suggestion_id: int,
        _: str = Depends(verify_credentials),
        active: SuggestionPipeline = Depends(require_pipeline),  # noqa: B008
    ) -> dict:
        try:
            return active.apply(suggestion_id).model_dump()
        except ZettelError as e:
            logger.error(f"Applying suggestion {suggestion_id} failed: {e}")
            raise to_http_error(e) from e

    @router.post("/api/suggestions/{suggestion_id}/ignore")
    def ignore_suggestion(
        suggestion_id: int,
        _: str = Depends(verify_credentials),
        active: SuggestionPipeline = Depends(require_pipeline),  # noqa: B008
    ) -> dict:
        try:
            return active.ignore(suggestion_id).model_dump()
        except ZettelError as e:
            raise to_http_error(e) from e

    @router.post("/api/scan")
    def scan(_: str = Depends(verify_credentials)) -> dict:
        report = orchestrator.run()
        return {
            **report.model_dump(),
            "created_links": report.created_links,
            "unmapped": report.unmapped,
        }

    return router
