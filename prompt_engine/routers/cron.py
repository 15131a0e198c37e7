import hmac
import logging
from fastapi import APIRouter, Depends, Header
from typing import Optional
from prompt_engine.config import settings
from prompt_engine.deps import get_orchestrator
from prompt_engine.errors import UnauthorizedError
from prompt_engine.models import utcnow
from prompt_engine.services.orchestrator import PromptOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Bearer CRON_SECRET; open only in development when no secret is set."""
    secret = settings.CRON_SECRET
    if not secret:
        if settings.ENVIRONMENT == "development":
            return
        logger.error("CRON_SECRET is not set; refusing scheduled run")
        raise UnauthorizedError("Unauthorized")
    if not hmac.compare_digest((authorization or "").encode(), f"Bearer {secret}".encode()):
        raise UnauthorizedError("Unauthorized")

@router.api_route("/generate-prompts", methods=["GET", "POST"], dependencies=[Depends(verify_cron_secret)])
async def generate_daily_prompts(orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    logger.info("[Cron] Starting daily prompt generation")
    result = await orchestrator.run_daily_generation_for_all_users()
    logger.info("[Cron] Daily prompt generation done: %s", result)
    return {"success": True, "message": "Daily prompt generation completed", **result,
            "timestamp": utcnow().isoformat()}
