from typing import List

import httpx
from loguru import logger

from zettelkasten.config import Settings
from zettelkasten.domain.suggestion import ScoredKeyword
from zettelkasten.errors import ConfigError, ExternalServiceError
from zettelkasten.suggestions.payload import parse_keywords
from zettelkasten.suggestions.prompt import get_prompt


class HttpSuggester:
    """Asks a text-inference HTTP endpoint for keyword suggestions."""

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str,
        model: str,
        temperature: float = 0.2,
        max_output_tokens: int = 256,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not 0.0 <= temperature <= 1.0:
            raise ConfigError(f"temperature must be within [0, 1], got {temperature}")
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpSuggester":
        if not settings.suggestion_api_key:
            raise ConfigError("No suggestion API key configured (ZETTEL_SUGGESTION_API_KEY)")
        return cls(
            endpoint=settings.suggestion_endpoint,
            api_key=settings.suggestion_api_key,
            model=settings.suggestion_model,
            temperature=settings.suggestion_temperature,
            max_output_tokens=settings.suggestion_max_output_tokens,
            timeout=settings.suggestion_timeout_seconds,
        )

    def suggest_keywords(self, text: str) -> List[ScoredKeyword]:
        body = {
            "model": self.model,
            "input": get_prompt(content=text),
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
        }
        try:
            response = self.client.post(
                self.endpoint,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Suggestion request failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError(f"Suggestion response is not JSON: {e}") from e

        keywords = parse_keywords(payload)
        logger.debug(f"Suggestion service proposed {len(keywords)} keywords")
        return keywords
