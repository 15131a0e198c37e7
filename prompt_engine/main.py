import logging
from contextlib import asynccontextmanager
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prompt_engine.config import settings
from prompt_engine.deps import get_clients, get_orchestrator, init_db
from prompt_engine.errors import register_exception_handlers
from prompt_engine.log import setup_logging
from prompt_engine.routers import cron, preferences, prompts

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    init_db()
    orchestrator = get_orchestrator()
    stale = orchestrator.reconcile_stale_jobs()
    if stale:
        logger.warning("Marked %d stale jobs as failed", stale)
    yield
    await orchestrator.queue.aclose()
    await get_clients().aclose()

app = FastAPI(title="Writing Prompt Engine", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

@app.get("/healthz")
def healthz():
    return {"status": "ok"}

app.include_router(prompts.router, prefix="/prompts", tags=["prompts"])
app.include_router(preferences.router, prefix="/preferences", tags=["preferences"])
app.include_router(cron.router, prefix="/cron", tags=["cron"])

def run():
    uvicorn.run("prompt_engine.main:app", host=settings.HOST, port=settings.PORT,
                log_level=settings.LOG_LEVEL.lower(), reload=settings.ENVIRONMENT == "development")
