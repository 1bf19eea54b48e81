from fastapi import FastAPI

from zettelkasten.api.endpoints import get_endpoints_router
from zettelkasten.config import Settings
from zettelkasten.dictionaries.base import DictionaryIndex
from zettelkasten.ingestion.orchestrator import ScanOrchestrator
from zettelkasten.suggestions.pipeline import SuggestionPipeline


def create_app(
    *,
    settings: Settings,
    orchestrator: ScanOrchestrator,
    dictionary: DictionaryIndex,
    pipeline: SuggestionPipeline | None = None,
) -> FastAPI:
    """Create FastAPI app.

    The suggestion routes answer 503 when no pipeline is configured.
    """
    app = FastAPI(title="Zettelkasten")
    app.include_router(
        router=get_endpoints_router(
            settings=settings, orchestrator=orchestrator, dictionary=dictionary, pipeline=pipeline
        )
    )
    return app
