import asyncio
import pytest
from types import SimpleNamespace
from prompt_engine.config import settings
from prompt_engine.services.clients import LazyClient
from prompt_engine.services.research import (
    ResearchCollector, citation_sources, fallback_report, parse_bullet_report, parse_json_report,
)


class FakeCompletions:
    def __init__(self, content=None, error=None, citations=None):
        self.content = content
        self.error = error
        self.citations = citations

    async def create(self, **kwargs):
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], citations=self.citations)


def collector(completions):
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return ResearchCollector(LazyClient("perplexity", "key", "http://search", 5, factory=lambda: fake), settings)


def test_parse_json_report_accepts_camel_case_keys():
    text = """Sure! {"trends": ["Heat pumps", ""], "interestingAngles": ["Living off-grid"],
    "sources": [{"title": "Grist", "url": "https://grist.org/a"}, {"url": "no-title"}],
    "currentEvents": ["COP summit"], "summary": " Busy year. "}"""
    parsed = parse_json_report(text)
    assert parsed["trends"] == ["Heat pumps"]
    assert parsed["interesting_angles"] == ["Living off-grid"]
    assert [s.title for s in parsed["sources"]] == ["Grist"]
    assert parsed["current_events"] == ["COP summit"]
    assert parsed["debates_and_discussions"] == []
    assert parsed["summary"] == "Busy year."


def test_parse_bullet_report_reads_trend_and_angle_sections():
    text = """Jazz is having a moment.
## Current trends
- Vinyl reissues
* Jazz on short video apps
## Angles worth writing about
1. Learning an instrument as an adult
"""
    parsed = parse_bullet_report(text)
    assert parsed["trends"] == ["Vinyl reissues", "Jazz on short video apps"]
    assert parsed["interesting_angles"] == ["Learning an instrument as an adult"]
    assert parsed["summary"] == "Jazz is having a moment."
    assert parse_bullet_report("just prose, nothing structured") is None


def test_citation_sources_accepts_urls_and_dicts():
    sources = citation_sources(["https://www.nature.com/x", {"url": "https://bbc.co.uk/y", "title": "BBC"}, 7])
    assert [(s.title, s.url) for s in sources] == [("www.nature.com", "https://www.nature.com/x"),
                                                    ("BBC", "https://bbc.co.uk/y")]


def test_research_uses_citations_when_report_has_no_sources():
    completions = FakeCompletions(content='{"trends": ["a"], "summary": "s"}', citations=["https://a.com/1"])
    report = asyncio.run(collector(completions).research("Gardening"))
    assert report.trends == ["a"]
    assert [s.url for s in report.sources] == ["https://a.com/1"]


def test_research_falls_back_when_service_errors():
    report = asyncio.run(collector(FakeCompletions(error=RuntimeError("503"))).research("Gardening"))
    expected = fallback_report("Gardening")
    assert (report.trends, report.summary) == (expected.trends, expected.summary)
    assert report.summary and report.trends and report.interesting_angles


def test_research_falls_back_on_unparseable_text():
    report = asyncio.run(collector(FakeCompletions(content="I could not find anything.",
                                                   citations=["https://b.org"])).research("Chess"))
    assert report.interest == "Chess"
    assert report.summary
    assert [s.url for s in report.sources] == ["https://b.org"]


def test_research_without_api_key_never_calls_out():
    lazy = LazyClient("perplexity", None, "http://search", 5, factory=lambda: 1 / 0)
    report = asyncio.run(ResearchCollector(lazy, settings).research("Chess"))
    assert report.interest == "Chess" and report.summary


@pytest.mark.parametrize("topic", ["", "x" * 20000, "Café ☕ 日本語"])
@pytest.mark.parametrize("completions", [FakeCompletions(error=RuntimeError("503")),
                                         FakeCompletions(content="nothing useful")])
def test_research_always_returns_a_full_report(topic, completions):
    report = asyncio.run(collector(completions).research(topic))
    assert report.interest == topic
    assert report.summary and report.trends and report.interesting_angles
