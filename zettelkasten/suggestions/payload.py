"""Decoding of keyword payloads returned by inference services.

Providers wrap the model output in different envelopes, and the output
itself is often a JSON document serialized into a string, sometimes more
than once. Everything here either returns scored keywords or raises
``ExternalServiceError``.
"""

import json
import re
from typing import Any, List

from loguru import logger

from zettelkasten.domain.suggestion import ScoredKeyword
from zettelkasten.errors import ExternalServiceError

CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)
MAX_DECODE_DEPTH = 4


def unwrap_envelope(payload: Any) -> Any:
    """Pull the model output out of a provider response envelope.

    Recognized shapes: a bare list or string, ``output_text``, OpenAI style
    ``output[].content[].text``, ``choices[0].message.content``, Gemini style
    ``candidates[0].content.parts[].text`` and ``{"keywords": [...]}``.
    """
    if isinstance(payload, (list, str)):
        return payload
    if not isinstance(payload, dict):
        raise ExternalServiceError(f"Unexpected payload type: {type(payload).__name__}")

    if "keywords" in payload:
        return payload["keywords"]
    if isinstance(payload.get("output_text"), str):
        return payload["output_text"]

    try:
        if "output" in payload:
            texts = [
                part["text"]
                for item in payload["output"]
                for part in item.get("content") or []
                if isinstance(part, dict) and isinstance(part.get("text"), str)
            ]
            if texts:
                return "".join(texts)
        if "choices" in payload:
            return payload["choices"][0]["message"]["content"]
        if "candidates" in payload:
            parts = payload["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise ExternalServiceError(f"Malformed response envelope: {e}") from e

    raise ExternalServiceError(f"Unrecognized response envelope with keys {sorted(payload)}")


def decode_keyword_list(payload: Any) -> list:
    """Unwrap and decode until a list comes out."""
    value = unwrap_envelope(payload)
    for _ in range(MAX_DECODE_DEPTH):
        if isinstance(value, list):
            return value
        if not isinstance(value, str):
            break
        text = value.strip()
        fenced = CODE_FENCE_PATTERN.match(text)
        if fenced:
            text = fenced.group(1)
        try:
            value = json.loads(text)
        except json.JSONDecodeError as e:
            raise ExternalServiceError(f"Response is not valid JSON: {text[:80]!r}") from e
        if isinstance(value, dict):
            value = unwrap_envelope(value)

    raise ExternalServiceError("Response does not contain a JSON array of keywords")


def parse_keywords(payload: Any) -> List[ScoredKeyword]:
    """Turn a service response into scored keywords.

    String items carry no score. Object items ``{"keyword", "confidence"}``
    keep the service's score; items with a score outside [0, 1] are dropped.
    """
    keywords = []
    for item in decode_keyword_list(payload):
        if isinstance(item, str):
            keywords.append(ScoredKeyword(keyword=item))
            continue

        if not isinstance(item, dict) or not isinstance(item.get("keyword"), str):
            logger.warning(f"Ignoring unusable suggestion item: {item!r}")
            continue

        confidence = item.get("confidence", item.get("score"))
        if confidence is not None and (
            isinstance(confidence, bool)
            or not isinstance(confidence, (int, float))
            or not 0.0 <= confidence <= 1.0
        ):
            logger.warning(f"Ignoring suggestion {item['keyword']!r} with confidence {confidence!r}")
            continue
        keywords.append(ScoredKeyword(keyword=item["keyword"], confidence=confidence))

    return keywords
