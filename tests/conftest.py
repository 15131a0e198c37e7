import os

os.environ["DB_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
for key in ("PERPLEXITY_API_KEY", "OPENROUTER_API_KEY", "IMAGE_API_KEY", "CRON_SECRET"):
    os.environ[key] = ""

import asyncio
from datetime import timedelta
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel
from prompt_engine.config import settings
from prompt_engine.deps import engine, get_orchestrator, get_repository, init_db
from prompt_engine.main import app
from prompt_engine.models import (
    ArtStyle, GeneratedVisual, PromptContent, PromptGenerationJob, ResearchReport, ResearchSource, utcnow,
)
from prompt_engine.repository import PromptRepository
from prompt_engine.services.orchestrator import PromptOrchestrator
from prompt_engine.services.pipeline import PipelineRunner

INTERESTS = ["Climate tech", "Jazz", "Urban gardening"]


class FakeResearch:
    def __init__(self, fail=(), hang=False):
        self.fail = set(fail)
        self.hang = hang
        self.gate = None
        self.calls = []

    async def research(self, topic):
        self.calls.append(topic)
        if self.hang:
            await asyncio.sleep(3600)
        if self.gate is not None:
            await self.gate.wait()
        if topic in self.fail:
            raise RuntimeError(f"search blew up for {topic}")
        return ResearchReport(
            interest=topic,
            trends=[f"{topic} is growing"],
            interesting_angles=[f"A personal take on {topic}", f"The cost of {topic}"],
            sources=[ResearchSource(title="Example News", url="https://example.com/story", snippet="Quote")],
            summary=f"Lots is happening with {topic}.",
        )


class FakeComposer:
    async def compose(self, report):
        return PromptContent(
            hook=f"Why is everyone suddenly talking about {report.interest.lower()} this year?",
            blurb=f"<p>{report.summary}</p>",
            tags=[report.interest.lower()],
            suggested_angles=report.interesting_angles,
        )


class FakeVisual:
    def __init__(self, fail=False):
        self.fail = fail

    async def generate(self, topic, context=None, art_style=None):
        if self.fail:
            raise RuntimeError("image service down")
        return GeneratedVisual(image_url=f"https://img.example.com/{topic.replace(' ', '-')}.png",
                               art_style=art_style or ArtStyle.watercolor, prompt=f"art for {topic}")


@pytest.fixture(autouse=True)
def db():
    SQLModel.metadata.drop_all(engine)
    init_db()
    yield engine


@pytest.fixture
def repo(db):
    return PromptRepository(db)


@pytest.fixture
def make_orchestrator(repo):
    def _make(fail=(), hang=False, visual_fails=False, **overrides):
        cfg = settings.model_copy(update={"DAILY_BATCH_PAUSE_SECONDS": 0, **overrides})
        pipeline = PipelineRunner(FakeResearch(fail, hang), FakeComposer(), FakeVisual(visual_fails),
                                  hook_max_words=cfg.HOOK_MAX_WORDS)
        return PromptOrchestrator(repo, pipeline, cfg)
    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def make_user(repo):
    def _make(external_id="user-1", interests=INTERESTS):
        user = repo.get_or_create_user(external_id)
        repo.save_preferences(user.id, list(interests))
        return user.id
    return _make


@pytest.fixture
def make_prompt(repo):
    def _make(user_id, interest="Jazz", **fields):
        values = dict(user_id=user_id, interest=interest, hook=f"What does {interest.lower()} sound like to you today?",
                      blurb="<p>Something is happening.</p>", tags=[interest.lower()],
                      suggested_angles=["Your first record"],
                      sources=[{"title": "Example", "url": "https://example.com", "snippet": ""}])
        values.update(fields)
        return repo.create_prompt(**values)
    return _make


@pytest.fixture
def client(repo, orchestrator):
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    def _headers(external_id="user-1"):
        return {settings.IDENTITY_HEADER: external_id}
    return _headers


@pytest.fixture
def backdate_job(db):
    """Push a job's created_at back past the job ceiling."""
    def _backdate(job_id, seconds):
        with Session(db) as session:
            row = session.get(PromptGenerationJob, job_id)
            row.created_at = utcnow() - timedelta(seconds=seconds)
            session.add(row)
            session.commit()
    return _backdate
