import asyncio
import logging
from typing import Optional

from prompt_engine.models import GeneratedVisual, PipelineResult, ResearchReport
from prompt_engine.services.composer import ContentComposer, fallback_content
from prompt_engine.services.research import ResearchCollector
from prompt_engine.services.visual import VisualComposer

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Turns one interest into prompt material.

    Research runs first; composition and the header image then run
    concurrently since the image only needs the topic and research summary.
    """

    def __init__(self, research: ResearchCollector, composer: ContentComposer, visual: VisualComposer,
                 hook_max_words: int = 18):
        self.research = research
        self.composer = composer
        self.visual = visual
        self.hook_max_words = hook_max_words

    async def run(self, topic: str, job_id: str) -> PipelineResult:
        try:
            logger.info("[%s] Researching: %s", job_id, topic)
            report = await self.research.research(topic)

            logger.info("[%s] Composing prompt and visual for: %s", job_id, topic)
            content, visual = await asyncio.gather(
                self.composer.compose(report),
                self._visual(topic, report, job_id),
            )
        except Exception as exc:
            logger.exception("[%s] Pipeline failed for %s", job_id, topic)
            empty = ResearchReport(interest=topic)
            return PipelineResult(interest=topic, research=empty,
                                  content=fallback_content(empty, self.hook_max_words),
                                  visual=None, success=False, error=str(exc) or exc.__class__.__name__)
        logger.info("[%s] Pipeline complete for: %s", job_id, topic)
        return PipelineResult(interest=topic, research=report, content=content, visual=visual, success=True)

    async def _visual(self, topic: str, report: ResearchReport, job_id: str) -> Optional[GeneratedVisual]:
        try:
            return await self.visual.generate(topic, report.summary)
        except Exception as exc:
            logger.warning("[%s] Visual generation failed for %s, continuing without image: %s", job_id, topic, exc)
            return None
