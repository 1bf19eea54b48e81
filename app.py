import sys

from loguru import logger

from zettelkasten.api import create_app
from zettelkasten.config import Settings
from zettelkasten.dictionaries import create_dictionary
from zettelkasten.errors import ConfigError
from zettelkasten.ingestion.orchestrator import ScanOrchestrator
from zettelkasten.suggestions.http_suggester import HttpSuggester
from zettelkasten.suggestions.pipeline import SuggestionPipeline

settings = Settings()

logger.configure(
    handlers=[
        {"sink": sys.stderr, "level": settings.effective_log_level},
        {"sink": str(settings.log_file), "level": "DEBUG", "rotation": "10 MB"},
    ]
)

logger.info(f"Initializing Zettelkasten API with the {settings.backend} dictionary backend")
dictionary = create_dictionary(settings)
orchestrator = ScanOrchestrator.from_settings(settings, dictionary)

try:
    suggester = HttpSuggester.from_settings(settings)
except ConfigError as e:
    logger.warning(f"Keyword suggestions disabled: {e}")
    suggester = None

pipeline = SuggestionPipeline(
    suggester=suggester,
    dictionary=dictionary,
    orchestrator=orchestrator,
    default_confidence=settings.default_confidence,
)
app = create_app(
    settings=settings,
    orchestrator=orchestrator,
    dictionary=dictionary,
    pipeline=pipeline,
)
