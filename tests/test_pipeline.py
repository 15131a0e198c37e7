import asyncio
from conftest import FakeComposer, FakeResearch, FakeVisual
from prompt_engine.services.pipeline import PipelineRunner


def test_visual_failure_does_not_fail_pipeline():
    runner = PipelineRunner(FakeResearch(), FakeComposer(), FakeVisual(fail=True))
    result = asyncio.run(runner.run("Jazz", "job-1"))
    assert result.success
    assert result.visual is None
    assert result.content.hook.startswith("Why is everyone")
    assert result.research.sources[0].url == "https://example.com/story"


def test_research_exception_marks_result_failed():
    runner = PipelineRunner(FakeResearch(fail={"Jazz"}), FakeComposer(), FakeVisual())
    result = asyncio.run(runner.run("Jazz", "job-1"))
    assert not result.success
    assert "search blew up" in result.error
    assert result.interest == "Jazz"
    assert result.content.hook
