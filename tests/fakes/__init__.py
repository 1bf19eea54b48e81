from tests.fakes.fake_suggester import FakeSuggester

__all__ = ["FakeSuggester"]
