from functools import lru_cache
from fastapi import Depends, Request
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine
from prompt_engine.config import settings, Settings
from prompt_engine.errors import NotFoundError, UnauthorizedError
from prompt_engine.repository import PromptRepository
from prompt_engine.services.clients import AIClients, build_clients
from prompt_engine.services.composer import ContentComposer
from prompt_engine.services.orchestrator import PromptOrchestrator
from prompt_engine.services.pipeline import PipelineRunner
from prompt_engine.services.research import ResearchCollector
from prompt_engine.services.visual import VisualComposer
import os

def make_engine(url: str):
    kwargs = {"echo": False}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            os.makedirs(os.path.dirname(url.split("///", 1)[-1]) or ".", exist_ok=True)
    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()
    return engine

engine = make_engine(settings.DB_URL)

def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)

def build_orchestrator(repository: PromptRepository, clients: AIClients, cfg: Settings = settings) -> PromptOrchestrator:
    pipeline = PipelineRunner(
        research=ResearchCollector(clients.research, cfg),
        composer=ContentComposer(clients.composer, cfg),
        visual=VisualComposer(clients.images, cfg),
        hook_max_words=cfg.HOOK_MAX_WORDS,
    )
    return PromptOrchestrator(repository, pipeline, cfg)

@lru_cache
def get_clients() -> AIClients:
    return build_clients(settings)

@lru_cache
def get_repository() -> PromptRepository:
    return PromptRepository(engine)

@lru_cache
def get_orchestrator() -> PromptOrchestrator:
    return build_orchestrator(get_repository(), get_clients())

def get_external_id(request: Request) -> str:
    """Opaque user id set by the upstream identity provider."""
    external_id = (request.headers.get(settings.IDENTITY_HEADER) or "").strip()
    if not external_id:
        raise UnauthorizedError("Unauthorized")
    return external_id

def get_user_id(external_id: str = Depends(get_external_id),
                repo: PromptRepository = Depends(get_repository)) -> str:
    user_id = repo.get_user_id(external_id)
    if not user_id:
        raise NotFoundError("User not found")
    return user_id
