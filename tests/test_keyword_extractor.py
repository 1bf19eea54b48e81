"""Tests for keyword marker extraction and normalization."""

import pytest

from zettelkasten.ingestion.keyword_extractor import KeywordExtractor


def test_extract_keywords() -> None:
    content = "# Title\nSome text {{project}} and {{ reading }}.\n{{project}} again"

    assert KeywordExtractor.extract(content) == {"project", "reading"}


def test_extract_ignores_empty_markers() -> None:
    assert KeywordExtractor.extract("{{}} {{   }} plain text") == set()


def test_extract_without_markers() -> None:
    assert KeywordExtractor.extract("No keywords here, only [[https://example.com]]") == set()


def test_normalize_rewrites_wikilinks() -> None:
    assert KeywordExtractor.normalize("see [[project]]") == "see {{project}}"


def test_normalize_keeps_url_links_literal() -> None:
    content = "[[https://example.com/a]] and {{http://example.com/b}}"

    assert (
        KeywordExtractor.normalize(content)
        == "[[https://example.com/a]] and [[http://example.com/b]]"
    )


@pytest.mark.parametrize(
    "content",
    [
        "",
        "plain text",
        "[[project]] {{reading}}",
        "[[https://example.com]] [[notes]]",
        "{{https://example.com}} {{project}} [[]]",
        "[[nested [[inner]] ]]",
    ],
)
def test_normalize_is_idempotent(content: str) -> None:
    once = KeywordExtractor.normalize(content)

    assert KeywordExtractor.normalize(once) == once


def test_has_marker() -> None:
    assert KeywordExtractor.has_marker("text {{project}}", "project")
    assert not KeywordExtractor.has_marker("text {{projects}}", "project")


@pytest.mark.parametrize(
    "content,expected",
    [
        ("", "{{reading}}\n"),
        ("text\n", "text\n{{reading}}\n"),
        ("text", "text\n{{reading}}\n"),
    ],
)
def test_append_marker(content: str, expected: str) -> None:
    assert KeywordExtractor.append_marker(content, "reading") == expected


@pytest.mark.parametrize(
    "keyword,expected",
    [
        ("reading", True),
        ("deep_work", True),
        ("c}d", False),
        ("https://example.com", False),
        (" padded", False),
    ],
)
def test_is_markable(keyword: str, expected: bool) -> None:
    assert KeywordExtractor.is_markable(keyword) is expected
